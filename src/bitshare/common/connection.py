"""
Framed socket wrapper: newline-terminated command lines plus length-prefixed blobs
"""
import socket
import logging
from typing import Optional, Tuple

from .errors import ConnectionClosed, ProtocolError
from .messages import Command, MessageType

logger = logging.getLogger(__name__)

RECV_CHUNK = 8192
MAX_LINE_LENGTH = 64 * 1024
MAX_FRAME_SIZE = 16 * 1024 * 1024


class LineConnection:
    """
    One TCP stream, owned by a single thread

    Reads go through an internal buffer: recv_line may pull in bytes that
    belong to the next frame, and recv_exact consumes those first.
    """

    def __init__(self, sock: socket.socket, address: Tuple[str, int]):
        self.socket = sock
        self.address = address
        self._buffer = bytearray()
        self.is_active = True
        self.bytes_sent = 0
        self.bytes_received = 0

    @classmethod
    def open(cls, host: str, port: int, timeout: Optional[float] = None) -> 'LineConnection':
        """Connects to host:port; OSError propagates to the caller"""
        sock = socket.create_connection((host, port), timeout=timeout)
        return cls(sock, (host, port))

    @property
    def peer_name(self) -> str:
        return f"{self.address[0]}:{self.address[1]}"

    def _fill(self) -> None:
        try:
            chunk = self.socket.recv(RECV_CHUNK)
        except OSError as e:
            self.is_active = False
            raise ConnectionClosed(f"recv from {self.peer_name} failed: {e}") from e
        if not chunk:
            self.is_active = False
            raise ConnectionClosed(f"{self.peer_name} closed the connection")
        self.bytes_received += len(chunk)
        self._buffer.extend(chunk)

    def recv_line(self) -> str:
        """Receives one line, without the newline and trailing whitespace"""
        while True:
            newline = self._buffer.find(b"\n")
            if newline >= 0:
                raw = bytes(self._buffer[:newline])
                del self._buffer[:newline + 1]
                return raw.decode("ascii", errors="replace").rstrip()
            if len(self._buffer) > MAX_LINE_LENGTH:
                raise ProtocolError(f"Line from {self.peer_name} exceeds {MAX_LINE_LENGTH} bytes")
            self._fill()

    def recv_command(self) -> Command:
        """Receives the next non-empty line and parses it"""
        while True:
            line = self.recv_line()
            if line.strip():
                return Command.parse(line)

    def recv_exact(self, size: int) -> bytes:
        """Receives exactly 'size' bytes or raises ConnectionClosed"""
        while len(self._buffer) < size:
            self._fill()
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def send_all(self, data: bytes) -> None:
        """Sends every byte of data or raises ConnectionClosed"""
        try:
            self.socket.sendall(data)
        except OSError as e:
            self.is_active = False
            raise ConnectionClosed(f"send to {self.peer_name} failed: {e}") from e
        self.bytes_sent += len(data)

    def send_line(self, line: str) -> None:
        if not line.endswith("\n"):
            line += "\n"
        try:
            data = line.encode("ascii")
        except UnicodeEncodeError as e:
            raise ProtocolError(f"Line to {self.peer_name} is not ASCII: {line.rstrip()!r}") from e
        self.send_all(data)

    def send_frame(self, header: str, payload: bytes) -> None:
        """Header line immediately followed by the raw payload"""
        self.send_line(header)
        self.send_all(payload)

    def recv_frame(self, message_type: MessageType) -> bytes:
        """
        Receives '<TYPE> <len>' followed by <len> raw bytes

        Returns:
            The payload
        """
        command = self.recv_command().expect(message_type, min_args=1)
        return self.recv_payload(command.arg_int(0))

    def recv_payload(self, length: int) -> bytes:
        if length < 0 or length > MAX_FRAME_SIZE:
            raise ProtocolError(f"Invalid frame length {length} from {self.peer_name}")
        return self.recv_exact(length)

    def close(self) -> None:
        """Closes the socket; safe to call more than once"""
        self.is_active = False
        try:
            self.socket.close()
        except OSError as e:
            logger.debug(f"Error closing connection to {self.peer_name}: {e}")

    def __enter__(self) -> 'LineConnection':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
