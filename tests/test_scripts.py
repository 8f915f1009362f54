import io
import json
import unittest
from contextlib import redirect_stdout
from unittest import mock

from bitshare.common.config import TRACKER_PORT
from bitshare.common.errors import TrackerError
from bitshare.scripts import show_status
from bitshare.scripts.start_peer import build_parser


class StartPeerArgumentsTests(unittest.TestCase):
    def test_positional_order(self):
        args = build_parser().parse_args(
            ["download", "movie", "/tmp/movie.dat", "150000", "7002", "10.0.0.5", "7000"])
        self.assertEqual(args.mode, "download")
        self.assertEqual(args.file_size, 150000)
        self.assertEqual(args.listen_port, 7002)
        self.assertEqual((args.tracker_ip, args.tracker_port), ("10.0.0.5", 7000))
        self.assertFalse(args.no_announce)

    def test_tracker_port_defaults(self):
        args = build_parser().parse_args(["seed", "movie", "/tmp/movie.dat", "150000", "7001", "10.0.0.5"])
        self.assertEqual(args.tracker_port, TRACKER_PORT)

    def test_unknown_mode_is_rejected(self):
        with redirect_stdout(io.StringIO()), mock.patch('sys.stderr', io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["leech", "movie", "/tmp/movie.dat", "1", "7001"])


class ShowStatusTests(unittest.TestCase):
    def run_main(self, argv):
        out = io.StringIO()
        with redirect_stdout(out):
            code = show_status.main(argv)
        return code, out.getvalue()

    @mock.patch.object(show_status, 'StatusClient')
    def test_prints_stats_and_files(self, client_cls):
        client_cls.return_value.get_stats.return_value = {"files_tracked": 1}
        client_cls.return_value.list_files.return_value = ["movie"]
        code, output = self.run_main(["http://127.0.0.1:8080"])
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output), {"stats": {"files_tracked": 1}, "files": ["movie"]})

    @mock.patch.object(show_status, 'StatusClient')
    def test_prints_peers_of_one_file(self, client_cls):
        client_cls.return_value.get_file_peers.return_value = [{"host": "10.0.0.1", "port": 7001}]
        code, output = self.run_main(["http://127.0.0.1:8080", "--file-id", "movie"])
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["peers"][0]["port"], 7001)

    @mock.patch.object(show_status, 'StatusClient')
    def test_error_exit_code(self, client_cls):
        client_cls.return_value.get_stats.side_effect = TrackerError("down")
        code, output = self.run_main(["http://127.0.0.1:8080"])
        self.assertEqual(code, 1)
        self.assertIn("down", output)


if __name__ == '__main__':
    unittest.main()
