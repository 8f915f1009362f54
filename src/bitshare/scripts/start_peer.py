import argparse
import logging

from ..common.config import (
    PEER_MODES, TRACKER_PORT, LOG_LEVEL, CONNECTION_TIMEOUT, PeerConfig, env_default,
)
from ..common.errors import BitshareError
from ..common.log import setup_logging
from ..peer.peer_node import PeerNode

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Starts a BitShare peer.",
        epilog="example: bitshare-peer seed myfile /tmp/file.dat 102400 7001 127.0.0.1",
    )
    parser.add_argument('mode', choices=PEER_MODES, help="'seed' (complete file) or 'download'")
    parser.add_argument('file_id', help='File identifier')
    parser.add_argument('file_path', help='Local file path')
    parser.add_argument('file_size', type=int, help='File size in bytes')
    parser.add_argument('listen_port', type=int, help='Local listen port')
    parser.add_argument('tracker_ip', nargs='?', default=env_default('TRACKER_HOST', '127.0.0.1'),
                        help='Tracker address')
    parser.add_argument('tracker_port', type=int, nargs='?',
                        default=env_default('TRACKER_PORT', TRACKER_PORT), help='Tracker port')
    parser.add_argument('--timeout', type=float, default=CONNECTION_TIMEOUT,
                        help='Connect/read timeout in seconds (0 disables)')
    parser.add_argument('--no-announce', action='store_true',
                        help='Do not send UPDATE to the tracker after each piece')
    parser.add_argument('--log-level', type=str, default=env_default('LOG_LEVEL', LOG_LEVEL))
    parser.add_argument('--log-file', type=str, default=None)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    config = PeerConfig(
        file_id=args.file_id,
        file_path=args.file_path,
        file_size=args.file_size,
        listen_port=args.listen_port,
        mode=args.mode,
        tracker_host=args.tracker_ip,
        tracker_port=args.tracker_port,
        connection_timeout=args.timeout or None,
        announce_pieces=not args.no_announce,
    )

    try:
        node = PeerNode(config)
        node.start()
    except (BitshareError, OSError) as e:
        logger.error(f"Peer failed to start: {e}")
        return 1

    try:
        node.wait_for_completion()
        logger.info("Seeding... Press Ctrl+C to stop.")
        while node.server.server_thread.is_alive():
            node.server.server_thread.join(timeout=1.0)
    except KeyboardInterrupt:
        logger.info(f"Statistics: {node.get_statistics()}")
    finally:
        node.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
