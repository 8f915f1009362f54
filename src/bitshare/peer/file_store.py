"""
Piece-level access to the shared file on disk
"""
import os
import threading
import logging

from ..common.errors import PieceStoreError
from .session import FileSession

logger = logging.getLogger(__name__)


class FileStore:
    """
    Reads and writes fixed-size pieces of one file

    A single lock serialises every open/seek/read/write so uploads and
    downloads never interleave on the file. The lock covers file I/O
    only, never a network exchange.
    """

    def __init__(self, session: FileSession):
        self.session = session
        self.file_path = session.file_path
        self._lock = threading.Lock()

    def read_piece(self, index: int) -> bytes:
        """
        Reads one piece

        Args:
            index: Zero-based piece index

        Returns:
            piece_size bytes, or the shorter remainder for the last piece

        Raises:
            PieceStoreError: invalid index, unreadable file or short read
        """
        length, offset = self._geometry(index)
        with self._lock:
            try:
                with open(self.file_path, 'rb') as f:
                    f.seek(offset)
                    data = f.read(length)
            except OSError as e:
                raise PieceStoreError(f"Cannot read piece {index} from {self.file_path}: {e}") from e

        if len(data) != length:
            raise PieceStoreError(f"Short read for piece {index}: {len(data)}/{length} bytes")
        return data

    def write_piece(self, index: int, data: bytes) -> None:
        """
        Writes one piece at its offset

        The file is created and extended to the full size on first use.

        Raises:
            PieceStoreError: invalid index, wrong length or any I/O failure
        """
        length, offset = self._geometry(index)
        if len(data) != length:
            raise PieceStoreError(f"Piece {index} must be {length} bytes, got {len(data)}")

        with self._lock:
            try:
                self._ensure_file()
                with open(self.file_path, 'r+b') as f:
                    f.seek(offset)
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise PieceStoreError(f"Cannot write piece {index} to {self.file_path}: {e}") from e

        logger.debug(f"Piece {index} written at offset {offset} ({length} bytes)")

    def has_complete_file(self) -> bool:
        return self.session.is_complete()

    def _geometry(self, index: int):
        if not self.session.is_valid_index(index):
            raise PieceStoreError(f"Piece index out of range: {index}")
        return self.session.piece_length(index), self.session.piece_offset(index)

    def _ensure_file(self) -> None:
        # Caller holds the lock
        if os.path.exists(self.file_path):
            return
        directory = os.path.dirname(self.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.file_path, 'wb') as f:
            f.truncate(self.session.file_size)
        logger.info(f"Created {self.file_path} ({self.session.file_size} bytes)")
