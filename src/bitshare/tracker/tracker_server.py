"""
BitShare tracker server
Keeps, per file_id, the peers that announced themselves and hands them out
to anyone asking for that file
"""
import socket
import threading
import time
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, asdict

from ..common.bitfield import count_set, decode_hex
from ..common.config import TRACKER_HOST, TRACKER_PORT, MAX_CONNECTIONS, ACCEPT_RETRY_INTERVAL
from ..common.connection import LineConnection
from ..common.errors import BitshareError, ConnectionClosed, ProtocolError
from ..common.messages import (
    Command, MessageBuilder, MessageType, ERR_UNKNOWN_COMMAND, invalid_format,
)

logger = logging.getLogger(__name__)


@dataclass
class PeerRecord:
    host: str
    port: int
    bitfield_hex: str
    registered_at: float
    updated_at: float

    @property
    def address(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['pieces'] = count_set(decode_hex(self.bitfield_hex, len(self.bitfield_hex) * 4))
        return data


class Registry:
    """
    In-memory directory file_id -> {(host, port): PeerRecord}

    Records are never expired; a peer that disappears stays listed until
    the tracker restarts. One lock guards every read and write.
    """

    def __init__(self):
        self._files: Dict[str, Dict[Tuple[str, int], PeerRecord]] = {}
        self._lock = threading.Lock()
        self.start_time = time.time()

    def register(self, file_id: str, host: str, port: int, bitfield_hex: str) -> bool:
        """
        Inserts or refreshes the record of (host, port) for file_id

        Returns:
            True when the peer was not known yet
        """
        now = time.time()
        with self._lock:
            peers = self._files.setdefault(file_id, {})
            record = peers.get((host, port))
            if record is None:
                peers[(host, port)] = PeerRecord(host, port, bitfield_hex, now, now)
                return True
            record.bitfield_hex = bitfield_hex
            record.updated_at = now
            return False

    def get_peers(self, file_id: str, host: str, port: Optional[int] = None) -> List[Tuple[str, int]]:
        """
        Addresses of the peers sharing file_id, minus the requester

        With port given only the exact (host, port) is left out; without it
        every record from host is left out.
        """
        with self._lock:
            peers = self._files.get(file_id, {})
            return [addr for addr in peers
                    if not (addr[0] == host and (port is None or addr[1] == port))]

    def update(self, file_id: str, host: str, piece_index: int) -> None:
        """Accepted for compatibility; the full bitmap travels with the next REGISTER"""
        with self._lock:
            known = file_id in self._files
        logger.debug(f"UPDATE {file_id} piece {piece_index} from {host} (known file: {known})")

    def file_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._files)

    def peer_records(self, file_id: str) -> List[PeerRecord]:
        with self._lock:
            return [PeerRecord(**asdict(r)) for r in self._files.get(file_id, {}).values()]

    def snapshot(self) -> Dict[str, List[Dict]]:
        with self._lock:
            return {file_id: [r.to_dict() for r in peers.values()]
                    for file_id, peers in self._files.items()}

    def get_stats(self) -> Dict:
        """Returns tracker statistics"""
        with self._lock:
            return {
                'files_tracked': len(self._files),
                'total_peers': sum(len(p) for p in self._files.values()),
                'uptime': int(time.time() - self.start_time),
            }


class TrackerServer:
    """Central server for peer discovery"""

    def __init__(self, host: str = TRACKER_HOST, port: int = TRACKER_PORT,
                 registry: Optional[Registry] = None):
        self.host = host
        self.port = port
        self.registry = registry if registry is not None else Registry()
        self.running = False
        self.socket: Optional[socket.socket] = None
        self.accept_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Binds the listening socket and accepts connections in a background thread"""
        self.socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.socket.bind((self.host, self.port))
            self.socket.listen(MAX_CONNECTIONS)
        except OSError:
            self.socket.close()
            raise
        self.port = self.socket.getsockname()[1]

        self.running = True
        self.accept_thread = threading.Thread(target=self._accept_loop, name="tracker-accept", daemon=True)
        self.accept_thread.start()
        logger.info(f"Tracker started on {self.host}:{self.port}")

    def serve_forever(self) -> None:
        """Starts the tracker and blocks until stop() is called"""
        if not self.running:
            self.start()
        try:
            while self.running and self.accept_thread.is_alive():
                self.accept_thread.join(timeout=1.0)
        finally:
            self.stop()

    def stop(self) -> None:
        """Stops the tracker server"""
        if not self.running:
            return
        self.running = False
        if self.socket:
            # Wakes the accept thread; close alone leaves it blocked on Linux
            try:
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                self.socket.close()
            except OSError:
                pass
        logger.info("Tracker stopped")

    def _accept_loop(self) -> None:
        while self.running:
            try:
                client_socket, address = self.socket.accept()
            except OSError as e:
                if self.running:
                    logger.error(f"Error accepting connection: {e}")
                    time.sleep(ACCEPT_RETRY_INTERVAL)
                    continue
                break
            client_thread = threading.Thread(
                target=self._handle_client,
                args=(client_socket, address),
                daemon=True
            )
            client_thread.start()

    def _handle_client(self, client_socket: socket.socket, address: Tuple[str, int]) -> None:
        """Answers commands from one client until it disconnects"""
        host = address[0]
        logger.debug(f"New connection from {host}:{address[1]}")
        with LineConnection(client_socket, address) as connection:
            try:
                while self.running:
                    line = connection.recv_line()
                    if not line.strip():
                        continue
                    response = self.process_line(line, host)
                    connection.send_line(response)
            except ConnectionClosed:
                logger.debug(f"Peer {host} disconnected")
            except BitshareError as e:
                logger.warning(f"Dropping connection from {host}: {e}")
            except Exception as e:
                logger.error(f"Error processing client {host}: {e}")

    def process_line(self, line: str, host: str) -> str:
        """
        Executes one tracker command

        Args:
            line: The command line, without newline
            host: Address of the requesting peer

        Returns:
            The response line, newline included
        """
        command = Command.parse(line)
        logger.debug(f"[RECV] {host}: {line}")

        if command.is_a(MessageType.REGISTER):
            return self._handle_register(command, host)
        elif command.is_a(MessageType.GET_PEERS):
            return self._handle_get_peers(command, host)
        elif command.is_a(MessageType.UPDATE):
            return self._handle_update(command, host)

        logger.warning(f"Unknown command from {host}: {command.name}")
        return MessageBuilder.error(ERR_UNKNOWN_COMMAND)

    def _handle_register(self, command: Command, host: str) -> str:
        """REGISTER <file_id> <port> <bitfield_hex>"""
        try:
            command.expect(MessageType.REGISTER, min_args=3)
            file_id = command.arg(0)
            port = command.arg_int(1)
            bitfield_hex = command.arg(2)
        except ProtocolError:
            return MessageBuilder.error(invalid_format(MessageType.REGISTER))
        if not 0 < port <= 65535:
            return MessageBuilder.error(invalid_format(MessageType.REGISTER))

        is_new = self.registry.register(file_id, host, port, bitfield_hex)
        logger.info(f"[REGISTER] File: {file_id}, Peer: {host}:{port}, Bitfield: {bitfield_hex}"
                    f"{'' if is_new else ' (updated)'}")
        return MessageBuilder.ok()

    def _handle_get_peers(self, command: Command, host: str) -> str:
        """GETPEERS <file_id> [<port>]"""
        try:
            command.expect(MessageType.GET_PEERS, min_args=1)
            file_id = command.arg(0)
            port = command.arg_int(1) if len(command.args) > 1 else None
        except ProtocolError:
            return MessageBuilder.error(invalid_format(MessageType.GET_PEERS))

        peers = self.registry.get_peers(file_id, host, port)
        logger.info(f"[GETPEERS] File: {file_id}, Requesting Peer: {host}, Returned {len(peers)} peers")
        return MessageBuilder.peers(peers)

    def _handle_update(self, command: Command, host: str) -> str:
        """UPDATE <file_id> <piece_index>"""
        try:
            command.expect(MessageType.UPDATE, min_args=2)
            file_id = command.arg(0)
            piece_index = command.arg_int(1)
        except ProtocolError:
            return MessageBuilder.error(invalid_format(MessageType.UPDATE))

        self.registry.update(file_id, host, piece_index)
        logger.info(f"[UPDATE] File: {file_id}, Peer: {host}, Piece: {piece_index}")
        return MessageBuilder.ok()
