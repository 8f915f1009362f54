import os
import threading
import unittest

from bitshare.common.errors import PieceStoreError
from bitshare.peer.file_store import FileStore
from bitshare.peer.session import Bitmap, FileSession

from support import FILE_ID, FILE_SIZE, TempDirMixin


class FileSessionTests(unittest.TestCase):
    def test_geometry_of_150000_byte_file(self):
        session = FileSession.empty(FILE_ID, "unused", FILE_SIZE)
        self.assertEqual(session.piece_count, 3)
        self.assertEqual(session.piece_length(0), 65536)
        self.assertEqual(session.piece_length(1), 65536)
        self.assertEqual(session.piece_length(2), 18928)
        self.assertEqual(session.piece_offset(2), 131072)

    def test_exact_multiple_has_full_last_piece(self):
        session = FileSession.empty(FILE_ID, "unused", 2 * 65536)
        self.assertEqual(session.piece_count, 2)
        self.assertEqual(session.piece_length(1), 65536)

    def test_seed_bitmap_is_full(self):
        session = FileSession.seed(FILE_ID, "unused", FILE_SIZE)
        self.assertTrue(session.is_complete())
        self.assertEqual(session.bitmap.to_hex(), "E0")
        self.assertEqual(session.progress(), 100.0)

    def test_invalid_index(self):
        session = FileSession.empty(FILE_ID, "unused", FILE_SIZE)
        self.assertFalse(session.is_valid_index(3))
        with self.assertRaises(IndexError):
            session.piece_length(-1)

    def test_non_positive_size_is_rejected(self):
        with self.assertRaises(ValueError):
            FileSession.empty(FILE_ID, "unused", 0)


class BitmapTests(unittest.TestCase):
    def test_set_is_monotonic(self):
        bitmap = Bitmap(3)
        self.assertTrue(bitmap.set(1))
        self.assertFalse(bitmap.set(1))
        self.assertTrue(bitmap.get(1))
        self.assertEqual(bitmap.snapshot(), [False, True, False])

    def test_get_out_of_range_is_false(self):
        bitmap = Bitmap(3, initial=True)
        self.assertFalse(bitmap.get(3))
        self.assertFalse(bitmap.get(-1))
        with self.assertRaises(IndexError):
            bitmap.set(3)

    def test_missing_from_keeps_index_order(self):
        bitmap = Bitmap(5)
        bitmap.set(2)
        self.assertEqual(bitmap.missing_from([True, False, True, True, True]), [0, 3, 4])
        self.assertEqual(Bitmap(3).missing_from([True, True, True]), [0, 1, 2])

    def test_concurrent_sets_all_land(self):
        bitmap = Bitmap(400)
        threads = [threading.Thread(target=lambda k=k: [bitmap.set(i) for i in range(k, 400, 4)])
                   for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertTrue(bitmap.all_set())
        self.assertEqual(bitmap.count(), 400)


class FileStoreTests(TempDirMixin, unittest.TestCase):
    def test_read_pieces_of_seed_file(self):
        path, content = self.make_file()
        store = FileStore(FileSession.seed(FILE_ID, path, FILE_SIZE))
        self.assertEqual(store.read_piece(0), content[:65536])
        self.assertEqual(store.read_piece(2), content[131072:])
        self.assertEqual(len(store.read_piece(2)), 18928)

    def test_write_creates_full_size_file(self):
        path = os.path.join(self.make_temp_dir(), "sub", "download.dat")
        session = FileSession.empty(FILE_ID, path, FILE_SIZE)
        store = FileStore(session)
        store.write_piece(2, b"z" * 18928)
        self.assertEqual(os.path.getsize(path), FILE_SIZE)
        self.assertEqual(store.read_piece(2), b"z" * 18928)

    def test_write_then_read_returns_latest_bytes(self):
        path = os.path.join(self.make_temp_dir(), "download.dat")
        store = FileStore(FileSession.empty(FILE_ID, path, FILE_SIZE))
        store.write_piece(1, b"a" * 65536)
        store.write_piece(0, b"b" * 65536)
        store.write_piece(1, b"c" * 65536)
        self.assertEqual(store.read_piece(1), b"c" * 65536)
        self.assertEqual(store.read_piece(0), b"b" * 65536)

    def test_wrong_length_is_rejected(self):
        path = os.path.join(self.make_temp_dir(), "download.dat")
        store = FileStore(FileSession.empty(FILE_ID, path, FILE_SIZE))
        with self.assertRaises(PieceStoreError):
            store.write_piece(0, b"short")
        self.assertFalse(os.path.exists(path))

    def test_missing_file_read_fails(self):
        path = os.path.join(self.make_temp_dir(), "absent.dat")
        store = FileStore(FileSession.seed(FILE_ID, path, FILE_SIZE))
        with self.assertRaises(PieceStoreError):
            store.read_piece(0)

    def test_truncated_file_is_a_short_read(self):
        path, _ = self.make_file(size=100000)
        store = FileStore(FileSession.seed(FILE_ID, path, FILE_SIZE))
        with self.assertRaises(PieceStoreError):
            store.read_piece(2)

    def test_out_of_range_index(self):
        path, _ = self.make_file()
        store = FileStore(FileSession.seed(FILE_ID, path, FILE_SIZE))
        with self.assertRaises(PieceStoreError):
            store.read_piece(3)

    def test_has_complete_file_follows_bitmap(self):
        path = os.path.join(self.make_temp_dir(), "download.dat")
        session = FileSession.empty(FILE_ID, path, FILE_SIZE)
        store = FileStore(session)
        for index in range(3):
            self.assertFalse(store.has_complete_file())
            store.write_piece(index, b"\x01" * session.piece_length(index))
            session.bitmap.set(index)
        self.assertTrue(store.has_complete_file())

    def test_pieces_error_is_an_ioerror(self):
        self.assertTrue(issubclass(PieceStoreError, IOError))


if __name__ == '__main__':
    unittest.main()
