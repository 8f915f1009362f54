"""
Client role of a peer: discovers peers through the tracker and pulls missing pieces
"""
import threading
import logging
from typing import Dict, List, Optional, Sequence

from ..common.bitfield import decode_binary
from ..common.config import CONNECTION_TIMEOUT, NO_PEERS_RETRY_INTERVAL, PASS_RETRY_INTERVAL
from ..common.connection import LineConnection
from ..common.errors import BitshareError, ConnectionClosed, PieceStoreError, ProtocolError, TrackerError
from ..common.messages import MessageBuilder, MessageType
from ..tracker.tracker_api import TrackerAPI
from .file_store import FileStore
from .session import FileSession

logger = logging.getLogger(__name__)


class Downloader:
    """
    Outer loop: GETPEERS, visit each peer in turn, sleep, repeat until complete

    Peers are processed one after the other with a single outstanding
    REQUEST per connection; pieces are requested in ascending index order.
    """

    def __init__(self, session: FileSession, store: FileStore, tracker: TrackerAPI,
                 listen_port: int,
                 timeout: Optional[float] = CONNECTION_TIMEOUT,
                 no_peers_retry_interval: float = NO_PEERS_RETRY_INTERVAL,
                 pass_retry_interval: float = PASS_RETRY_INTERVAL,
                 announce_pieces: bool = True):
        self.session = session
        self.store = store
        self.tracker = tracker
        self.listen_port = listen_port
        self.timeout = timeout
        self.no_peers_retry_interval = no_peers_retry_interval
        self.pass_retry_interval = pass_retry_interval
        self.announce_pieces = announce_pieces
        self._stop_event = threading.Event()

        # Statistics
        self._stats_lock = threading.Lock()
        self.pieces_downloaded = 0
        self.bytes_downloaded = 0
        self.peer_sessions = 0
        self.failed_sessions = 0

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> bool:
        """
        Downloads until every piece is owned or stop() is called

        Returns:
            True if the file is complete
        """
        logger.info(f"[DOWNLOADER] Started for {self.session.file_id} "
                    f"({self.session.bitmap.count()}/{self.session.piece_count} pieces owned)")

        while not self.store.has_complete_file() and not self.stopped:
            self._refresh_registration()
            peers = self._discover_peers()
            if not peers:
                logger.info("[DOWNLOADER] No peers available, waiting...")
                self._stop_event.wait(self.no_peers_retry_interval)
                continue

            for host, port in peers:
                if self.store.has_complete_file() or self.stopped:
                    break
                self.download_from_peer(host, port)

            if not self.store.has_complete_file():
                self._stop_event.wait(self.pass_retry_interval)

        complete = self.store.has_complete_file()
        if complete:
            logger.info("[DOWNLOADER] Download completed! All pieces received.")
            self._refresh_registration()
        return complete

    def _discover_peers(self):
        try:
            return self.tracker.get_peers(self.session.file_id, self.listen_port)
        except TrackerError as e:
            logger.warning(f"[DOWNLOADER] {e}")
            return []

    def _refresh_registration(self) -> None:
        try:
            self.tracker.register(self.session.file_id, self.listen_port, self.session.bitmap.snapshot())
        except TrackerError as e:
            logger.warning(f"[DOWNLOADER] Could not refresh registration: {e}")

    def needed_pieces(self, remote_bitmap: Sequence[bool]) -> List[int]:
        """Indices the remote peer has and we lack, ascending"""
        return self.session.bitmap.missing_from(remote_bitmap)

    def download_from_peer(self, host: str, port: int) -> int:
        """
        Runs one session against a peer

        Returns:
            Number of pieces acquired from this peer
        """
        peer = f"{host}:{port}"
        logger.info(f"[CLIENT] Connecting to peer {peer}")
        with self._stats_lock:
            self.peer_sessions += 1

        try:
            connection = LineConnection.open(host, port, self.timeout)
        except OSError as e:
            logger.warning(f"[CLIENT] Failed to connect to {peer}: {e}")
            self._record_failure()
            return 0

        acquired = 0
        with connection:
            try:
                remote_bitmap = self._handshake(connection)
                needed = self.needed_pieces(remote_bitmap)
                logger.info(f"[CLIENT] Peer {peer} has {len(needed)} pieces we need")
                for index in needed:
                    if self.stopped:
                        break
                    if self.session.bitmap.get(index):
                        continue
                    self._fetch_piece(connection, index)
                    acquired += 1
                    if self.store.has_complete_file():
                        logger.info(f"[CLIENT] File complete after piece {index} from {peer}")
                        break
            except (ConnectionClosed, ProtocolError, PieceStoreError) as e:
                logger.warning(f"[CLIENT] Abandoning {peer}: {e}")
                self._record_failure()
            except BitshareError as e:
                logger.error(f"[CLIENT] Unexpected error with {peer}: {e}")
                self._record_failure()

        logger.info(f"[CLIENT] Disconnected from {peer} ({acquired} pieces acquired)")
        return acquired

    def _handshake(self, connection: LineConnection) -> List[bool]:
        """HANDSHAKE, then receive their BITFIELD and send ours"""
        connection.send_line(MessageBuilder.handshake(self.session.file_id))
        reply = connection.recv_command()
        if not reply.is_a(MessageType.HANDSHAKE_OK):
            raise ProtocolError(f"Handshake failed: {reply.name} {reply.text}".rstrip())
        logger.debug(f"[CLIENT] Handshake successful with {connection.peer_name}")

        remote = decode_binary(connection.recv_frame(MessageType.BITFIELD), self.session.piece_count)
        own = self.session.bitmap.to_binary()
        connection.send_frame(MessageBuilder.bitfield_header(len(own)), own)
        logger.debug(f"[CLIENT] Bitfield exchanged with {connection.peer_name}")
        return remote

    def _fetch_piece(self, connection: LineConnection, index: int) -> None:
        connection.send_line(MessageBuilder.request(index))
        header = connection.recv_command()
        if header.is_a(MessageType.ERROR):
            raise ProtocolError(f"Peer refused piece {index}: {header.text}")
        header.expect(MessageType.PIECE, min_args=2)
        received_index = header.arg_int(0)
        length = header.arg_int(1)
        if received_index != index:
            raise ProtocolError(f"Piece index mismatch: asked {index}, got {received_index}")

        data = connection.recv_payload(length)
        # Write first, then flip the bit: a set bit always means the bytes are on disk
        self.store.write_piece(index, data)
        if self.session.bitmap.set(index):
            with self._stats_lock:
                self.pieces_downloaded += 1
                self.bytes_downloaded += len(data)
        progress = self.session.progress()
        logger.info(f"[CLIENT] Downloaded piece {index} from {connection.peer_name} "
                    f"({len(data)} bytes, {progress:.1f}%)")

        try:
            connection.send_line(MessageBuilder.have(index))
        except ConnectionClosed as e:
            logger.debug(f"[CLIENT] HAVE {index} not delivered: {e}")

        if self.announce_pieces:
            try:
                self.tracker.update(self.session.file_id, index)
            except TrackerError as e:
                logger.debug(f"[CLIENT] UPDATE {index} not delivered: {e}")

    def _record_failure(self) -> None:
        with self._stats_lock:
            self.failed_sessions += 1

    def get_statistics(self) -> Dict:
        with self._stats_lock:
            return {
                'peer_sessions': self.peer_sessions,
                'failed_sessions': self.failed_sessions,
                'pieces_downloaded': self.pieces_downloaded,
                'bytes_downloaded': self.bytes_downloaded,
            }
