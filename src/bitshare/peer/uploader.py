"""
Server role of a peer: answers handshakes and piece requests from other peers
"""
import socket
import threading
import time
import logging
from typing import Dict, Optional, Tuple

from ..common.config import PEER_HOST, MAX_CONNECTIONS, CONNECTION_TIMEOUT, ACCEPT_RETRY_INTERVAL
from ..common.connection import LineConnection
from ..common.errors import BitshareError, ConnectionClosed, PieceStoreError, ProtocolError
from ..common.messages import (
    Command, MessageBuilder, MessageType,
    ERR_PIECE_NOT_AVAILABLE, ERR_READ_FAILED, ERR_WRONG_FILE_ID,
)
from .file_store import FileStore
from .session import FileSession

logger = logging.getLogger(__name__)


class PeerServer:
    """
    Listens for inbound peers; one daemon thread per connection

    Per connection: HANDSHAKE -> BITFIELD exchange -> REQUEST/HAVE loop.
    Any protocol violation or I/O failure ends that connection only.
    """

    def __init__(self, session: FileSession, store: FileStore,
                 host: str = PEER_HOST, port: int = 0,
                 timeout: Optional[float] = CONNECTION_TIMEOUT):
        self.session = session
        self.store = store
        self.host = host
        self.port = port
        self.timeout = timeout
        self.server_socket: Optional[socket.socket] = None
        self.server_thread: Optional[threading.Thread] = None
        self.is_running = False

        # Statistics
        self._stats_lock = threading.Lock()
        self.pieces_uploaded = 0
        self.bytes_uploaded = 0
        self.connections_served = 0

    def start(self) -> None:
        """Binds the listen socket and starts the accept thread"""
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.server_socket.bind((self.host, self.port))
            self.server_socket.listen(MAX_CONNECTIONS)
        except OSError:
            self.server_socket.close()
            raise
        self.port = self.server_socket.getsockname()[1]

        self.is_running = True
        self.server_thread = threading.Thread(target=self._server_loop, name="peer-server", daemon=True)
        self.server_thread.start()
        logger.info(f"Serving {self.session.file_id} on {self.host}:{self.port}")

    def stop(self) -> None:
        self.is_running = False
        if self.server_socket:
            try:
                self.server_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                self.server_socket.close()
            except OSError:
                pass
        logger.info(f"Peer server on port {self.port} stopped")

    def _server_loop(self) -> None:
        while self.is_running:
            try:
                client_socket, address = self.server_socket.accept()
            except OSError as e:
                if self.is_running:
                    logger.error(f"Accept failed: {e}")
                    time.sleep(ACCEPT_RETRY_INTERVAL)
                    continue
                break
            if self.timeout is not None:
                client_socket.settimeout(self.timeout)
            thread = threading.Thread(
                target=self.handle_connection,
                args=(client_socket, address),
                daemon=True
            )
            thread.start()

    def handle_connection(self, client_socket: socket.socket, address: Tuple[str, int]) -> None:
        """Runs the upload state machine for one inbound connection"""
        peer = f"{address[0]}:{address[1]}"
        logger.info(f"[SERVER] New connection from {peer}")
        with self._stats_lock:
            self.connections_served += 1

        with LineConnection(client_socket, address) as connection:
            try:
                if not self._handshake(connection):
                    return
                self._exchange_bitfields(connection)
                self._serve(connection)
            except ConnectionClosed as e:
                logger.info(f"[SERVER] Connection with {peer} ended: {e}")
            except ProtocolError as e:
                logger.warning(f"[SERVER] Protocol error from {peer}: {e}")
            except BitshareError as e:
                logger.error(f"[SERVER] Error serving {peer}: {e}")
        logger.info(f"[SERVER] Connection closed with {peer}")

    def _handshake(self, connection: LineConnection) -> bool:
        command = connection.recv_command().expect(MessageType.HANDSHAKE, min_args=1)
        requested = command.arg(0)
        if requested != self.session.file_id:
            logger.warning(f"[SERVER] {connection.peer_name} asked for {requested!r}, "
                           f"we share {self.session.file_id!r}")
            connection.send_line(MessageBuilder.error(ERR_WRONG_FILE_ID))
            return False
        connection.send_line(MessageBuilder.handshake_ok())
        return True

    def _exchange_bitfields(self, connection: LineConnection) -> None:
        # Ours first, then drain theirs to keep the stream framed
        own = self.session.bitmap.to_binary()
        connection.send_frame(MessageBuilder.bitfield_header(len(own)), own)
        connection.recv_frame(MessageType.BITFIELD)
        logger.debug(f"[SERVER] Bitfield exchanged with {connection.peer_name}")

    def _serve(self, connection: LineConnection) -> None:
        while self.is_running:
            try:
                command = connection.recv_command()
            except ConnectionClosed:
                return

            if command.is_a(MessageType.REQUEST) and command.args:
                self._handle_request(connection, command)
            elif command.is_a(MessageType.HAVE) and command.args:
                logger.info(f"[SERVER] Peer {connection.peer_name} now has piece {command.arg(0)}")
            else:
                logger.info(f"[SERVER] Ending session with {connection.peer_name} on {command.name}")
                return

    def _handle_request(self, connection: LineConnection, command: Command) -> None:
        try:
            index = command.arg_int(0)
        except ProtocolError:
            index = -1
        logger.info(f"[SERVER] Peer {connection.peer_name} requests piece {index}")

        if not self.session.bitmap.get(index):
            connection.send_line(MessageBuilder.error(ERR_PIECE_NOT_AVAILABLE))
            return

        try:
            data = self.store.read_piece(index)
        except PieceStoreError as e:
            logger.error(f"[SERVER] {e}")
            connection.send_line(MessageBuilder.error(ERR_READ_FAILED))
            return

        connection.send_frame(MessageBuilder.piece_header(index, len(data)), data)
        with self._stats_lock:
            self.pieces_uploaded += 1
            self.bytes_uploaded += len(data)
        logger.info(f"[SERVER] Sent piece {index} to {connection.peer_name} ({len(data)} bytes)")

    def get_statistics(self) -> Dict:
        with self._stats_lock:
            return {
                'connections_served': self.connections_served,
                'pieces_uploaded': self.pieces_uploaded,
                'bytes_uploaded': self.bytes_uploaded,
            }
