"""
Shared fixtures for the socket-level tests
"""
import os
import shutil
import tempfile
import threading

from bitshare.common.connection import LineConnection
from bitshare.common.messages import MessageType
from bitshare.peer.file_store import FileStore
from bitshare.peer.session import FileSession
from bitshare.peer.uploader import PeerServer

HOST = "127.0.0.1"
FILE_ID = "testfile"
FILE_SIZE = 150000
TIMEOUT = 5


class TempDirMixin:
    def make_temp_dir(self) -> str:
        path = tempfile.mkdtemp(prefix="bitshare-test-")
        self.addCleanup(shutil.rmtree, path, True)
        return path

    def make_file(self, size: int = FILE_SIZE, name: str = "source.dat") -> (str, bytes):
        path = os.path.join(self.make_temp_dir(), name)
        content = os.urandom(size)
        with open(path, 'wb') as f:
            f.write(content)
        return path, content


def start_seed_server(test, file_path: str, file_size: int = FILE_SIZE, file_id: str = FILE_ID):
    session = FileSession.seed(file_id, file_path, file_size)
    store = FileStore(session)
    server = PeerServer(session, store, host=HOST, port=0, timeout=TIMEOUT)
    server.start()
    test.addCleanup(server.stop)
    return session, store, server


def open_peer_session(port: int, file_id: str = FILE_ID, own_bitfield: bytes = b"\x00"):
    """Connects, handshakes and exchanges bitfields; returns (connection, remote bitfield bytes)"""
    conn = LineConnection.open(HOST, port, timeout=TIMEOUT)
    conn.send_line(f"HANDSHAKE {file_id}")
    reply = conn.recv_line()
    if reply != "HANDSHAKE_OK":
        conn.close()
        raise AssertionError(f"handshake refused: {reply}")
    remote = conn.recv_frame(MessageType.BITFIELD)
    conn.send_frame(f"BITFIELD {len(own_bitfield)}", own_bitfield)
    return conn, remote


class StubTracker:
    """Stands in for TrackerAPI in downloader tests"""

    def __init__(self, peers=None):
        self.peers = list(peers or [])
        self.registrations = []
        self.updates = []
        self._lock = threading.Lock()

    def register(self, file_id, port, bitmap):
        with self._lock:
            self.registrations.append((file_id, port, list(bitmap)))

    def get_peers(self, file_id, port=None):
        return list(self.peers)

    def update(self, file_id, piece_index):
        with self._lock:
            self.updates.append((file_id, piece_index))
