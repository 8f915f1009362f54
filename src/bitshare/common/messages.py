"""
Line-oriented messages of the BitShare tracker and peer protocols

Every command is one ASCII line terminated by '\\n'. BITFIELD and PIECE
headers are followed by exactly <len> raw bytes with no further framing.
"""
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .errors import ProtocolError

logger = logging.getLogger(__name__)


class MessageType(Enum):
    # Tracker messages
    REGISTER = "REGISTER"
    GET_PEERS = "GETPEERS"
    UPDATE = "UPDATE"
    OK = "OK"
    PEERS = "PEERS"
    ERROR = "ERROR"

    # P2P messages
    HANDSHAKE = "HANDSHAKE"
    HANDSHAKE_OK = "HANDSHAKE_OK"
    BITFIELD = "BITFIELD"
    REQUEST = "REQUEST"
    PIECE = "PIECE"
    HAVE = "HAVE"


# Error texts carried after "ERROR "
ERR_UNKNOWN_COMMAND = "Unknown command"
ERR_WRONG_FILE_ID = "Wrong file_id"
ERR_PIECE_NOT_AVAILABLE = "Piece not available"
ERR_READ_FAILED = "Failed to read piece"


def invalid_format(command: MessageType) -> str:
    return f"Invalid {command.value} format"


@dataclass
class Command:
    name: str
    args: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, line: str) -> 'Command':
        """Splits a trimmed line into its command word and arguments"""
        tokens = line.split()
        if not tokens:
            raise ProtocolError("Empty command line")
        return cls(name=tokens[0], args=tokens[1:])

    def is_a(self, message_type: MessageType) -> bool:
        return self.name == message_type.value

    def expect(self, message_type: MessageType, min_args: int = 0) -> 'Command':
        """Raises ProtocolError unless this is message_type with at least min_args arguments"""
        if not self.is_a(message_type):
            raise ProtocolError(f"Expected {message_type.value}, got {self.name}")
        if len(self.args) < min_args:
            raise ProtocolError(f"{self.name} needs {min_args} argument(s), got {len(self.args)}")
        return self

    def arg(self, index: int) -> str:
        try:
            return self.args[index]
        except IndexError:
            raise ProtocolError(f"{self.name}: missing argument {index + 1}")

    def arg_int(self, index: int) -> int:
        value = self.arg(index)
        try:
            return int(value)
        except ValueError:
            raise ProtocolError(f"{self.name}: argument {index + 1} is not an integer: {value!r}")

    @property
    def text(self) -> str:
        """Arguments joined back together, e.g. the message of an ERROR line"""
        return " ".join(self.args)


class MessageBuilder:
    """Builds protocol lines, newline included"""

    @staticmethod
    def _line(message_type: MessageType, *args) -> str:
        parts = [message_type.value] + [str(a) for a in args]
        return " ".join(parts) + "\n"

    # Tracker protocol

    @staticmethod
    def register(file_id: str, port: int, bitfield_hex: str) -> str:
        return MessageBuilder._line(MessageType.REGISTER, file_id, port, bitfield_hex)

    @staticmethod
    def get_peers(file_id: str, port: int = None) -> str:
        if port is None:
            return MessageBuilder._line(MessageType.GET_PEERS, file_id)
        return MessageBuilder._line(MessageType.GET_PEERS, file_id, port)

    @staticmethod
    def update(file_id: str, piece_index: int) -> str:
        return MessageBuilder._line(MessageType.UPDATE, file_id, piece_index)

    @staticmethod
    def ok() -> str:
        return MessageBuilder._line(MessageType.OK)

    @staticmethod
    def peers(addresses: Sequence[Tuple[str, int]]) -> str:
        # Empty list keeps the trailing space: "PEERS \n"
        return f"{MessageType.PEERS.value} {format_peer_list(addresses)}\n"

    @staticmethod
    def error(message: str) -> str:
        return MessageBuilder._line(MessageType.ERROR, message)

    # Peer protocol

    @staticmethod
    def handshake(file_id: str) -> str:
        return MessageBuilder._line(MessageType.HANDSHAKE, file_id)

    @staticmethod
    def handshake_ok() -> str:
        return MessageBuilder._line(MessageType.HANDSHAKE_OK)

    @staticmethod
    def bitfield_header(length: int) -> str:
        return MessageBuilder._line(MessageType.BITFIELD, length)

    @staticmethod
    def request(piece_index: int) -> str:
        return MessageBuilder._line(MessageType.REQUEST, piece_index)

    @staticmethod
    def piece_header(piece_index: int, length: int) -> str:
        return MessageBuilder._line(MessageType.PIECE, piece_index, length)

    @staticmethod
    def have(piece_index: int) -> str:
        return MessageBuilder._line(MessageType.HAVE, piece_index)


def format_peer_list(addresses: Sequence[Tuple[str, int]]) -> str:
    return ",".join(f"{host}:{port}" for host, port in addresses)


def parse_peer_list(payload: str) -> List[Tuple[str, int]]:
    """
    Parses 'host:port,host:port,...'

    Malformed entries are skipped so a single bad record does not hide the
    rest of the swarm.
    """
    peers = []
    for entry in payload.split(","):
        entry = entry.strip()
        if not entry:
            continue
        host, sep, port = entry.rpartition(":")
        if not sep or not host:
            logger.warning(f"Ignoring malformed peer address: {entry!r}")
            continue
        try:
            peers.append((host, int(port)))
        except ValueError:
            logger.warning(f"Ignoring peer address with invalid port: {entry!r}")
    return peers
