"""
Client API for talking to the tracker
"""
import socket
import logging
from typing import List, Optional, Sequence, Tuple

from ..common.bitfield import encode_hex
from ..common.config import TRACKER_HOST, TRACKER_PORT, CONNECTION_TIMEOUT
from ..common.connection import LineConnection
from ..common.errors import BitshareError, TrackerError
from ..common.messages import Command, MessageBuilder, MessageType, parse_peer_list

logger = logging.getLogger(__name__)


class TrackerAPI:
    """Client for the tracker server; one short connection per request"""

    def __init__(self, tracker_host: str = TRACKER_HOST, tracker_port: int = TRACKER_PORT,
                 timeout: Optional[float] = CONNECTION_TIMEOUT):
        self.tracker_host = tracker_host
        self.tracker_port = tracker_port
        self.timeout = timeout

    def _request(self, line: str) -> str:
        """
        Sends one command and returns the response line

        Raises:
            TrackerError: tracker unreachable, connection dropped or empty reply
        """
        try:
            with LineConnection.open(self.tracker_host, self.tracker_port, self.timeout) as conn:
                conn.send_line(line)
                return conn.recv_line()
        except (OSError, BitshareError) as e:
            raise TrackerError(f"Tracker {self.tracker_host}:{self.tracker_port} unavailable: {e}") from e

    def _expect_ok(self, response: str, what: str) -> None:
        if response.strip() != MessageType.OK.value:
            raise TrackerError(f"{what} rejected by tracker: {response}")

    def register(self, file_id: str, port: int, bitmap: Sequence[bool]) -> None:
        """
        Registers (or refreshes) this peer for file_id

        Args:
            file_id: Identifier of the shared file
            port: Port this peer listens on
            bitmap: Current ownership bitmap
        """
        response = self._request(MessageBuilder.register(file_id, port, encode_hex(bitmap)))
        self._expect_ok(response, "REGISTER")
        logger.info(f"Registered with tracker for {file_id} on port {port}")

    def get_peers(self, file_id: str, port: Optional[int] = None) -> List[Tuple[str, int]]:
        """
        Fetches the peers sharing file_id

        Args:
            file_id: Identifier of the shared file
            port: Our listen port, so the tracker leaves only us out

        Returns:
            List of (host, port)
        """
        response = self._request(MessageBuilder.get_peers(file_id, port))
        if not response.strip():
            raise TrackerError("Empty GETPEERS response")
        command = Command.parse(response)
        if not command.is_a(MessageType.PEERS):
            raise TrackerError(f"GETPEERS rejected by tracker: {response}")
        peers = parse_peer_list(command.text)
        logger.debug(f"Tracker returned {len(peers)} peers for {file_id}")
        return peers

    def update(self, file_id: str, piece_index: int) -> None:
        response = self._request(MessageBuilder.update(file_id, piece_index))
        self._expect_ok(response, "UPDATE")

    def is_tracker_alive(self) -> bool:
        """
        Checks whether the tracker accepts connections

        Returns:
            True if the tracker is answering, False otherwise
        """
        try:
            with socket.create_connection((self.tracker_host, self.tracker_port), timeout=5):
                return True
        except OSError:
            return False
