"""
Process-wide state for one shared file: its geometry and the ownership bitmap
"""
import math
import threading
import logging
from typing import List, Optional, Sequence

from ..common.bitfield import encode_binary, encode_hex
from ..common.config import PIECE_SIZE, PeerConfig

logger = logging.getLogger(__name__)


class Bitmap:
    """
    Piece ownership, one bool per piece index

    Bits only ever go from False to True. Every method holds the lock for a
    single check or update and never across I/O.
    """

    def __init__(self, size: int, initial: bool = False):
        self._bits: List[bool] = [initial] * size
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._bits)

    def get(self, index: int) -> bool:
        """False for indices out of range"""
        with self._lock:
            return 0 <= index < len(self._bits) and self._bits[index]

    def set(self, index: int) -> bool:
        """
        Marks a piece as owned

        Returns:
            True if the bit flipped, False if it was already set
        """
        if not 0 <= index < len(self._bits):
            raise IndexError(f"Piece index out of range: {index}")
        with self._lock:
            if self._bits[index]:
                return False
            self._bits[index] = True
            return True

    def snapshot(self) -> List[bool]:
        with self._lock:
            return list(self._bits)

    def all_set(self) -> bool:
        with self._lock:
            return all(self._bits)

    def count(self) -> int:
        with self._lock:
            return sum(self._bits)

    def missing_from(self, remote: Sequence[bool]) -> List[int]:
        """Indices the remote bitmap has and this one lacks, ascending"""
        with self._lock:
            return [i for i, owned in enumerate(self._bits)
                    if not owned and i < len(remote) and remote[i]]

    def to_binary(self) -> bytes:
        return encode_binary(self.snapshot())

    def to_hex(self) -> str:
        return encode_hex(self.snapshot())


class FileSession:
    """Geometry and ownership of the file this process shares"""

    def __init__(self, file_id: str, file_path: str, file_size: int,
                 piece_size: int = PIECE_SIZE, complete: bool = False):
        if file_size <= 0:
            raise ValueError(f"File size must be positive, got {file_size}")
        self.file_id = file_id
        self.file_path = file_path
        self.file_size = file_size
        self.piece_size = piece_size
        self.piece_count = math.ceil(file_size / piece_size)
        self.bitmap = Bitmap(self.piece_count, initial=complete)

    @classmethod
    def seed(cls, file_id: str, file_path: str, file_size: int,
             piece_size: int = PIECE_SIZE) -> 'FileSession':
        return cls(file_id, file_path, file_size, piece_size, complete=True)

    @classmethod
    def empty(cls, file_id: str, file_path: str, file_size: int,
              piece_size: int = PIECE_SIZE) -> 'FileSession':
        return cls(file_id, file_path, file_size, piece_size, complete=False)

    @classmethod
    def from_config(cls, config: PeerConfig) -> 'FileSession':
        session = cls(config.file_id, config.file_path, config.file_size,
                      config.piece_size, complete=config.is_seed)
        logger.info(f"Session {session.file_id}: {session.file_size} bytes, "
                    f"{session.piece_count} pieces of {session.piece_size} bytes, "
                    f"{'seed' if config.is_seed else 'download'} mode")
        return session

    def is_valid_index(self, index: int) -> bool:
        return 0 <= index < self.piece_count

    def piece_offset(self, index: int) -> int:
        return index * self.piece_size

    def piece_length(self, index: int) -> int:
        """Piece size, except for the last piece which holds the remainder"""
        if not self.is_valid_index(index):
            raise IndexError(f"Piece index out of range: {index}")
        if index == self.piece_count - 1:
            return self.file_size - index * self.piece_size
        return self.piece_size

    def is_complete(self) -> bool:
        return self.bitmap.all_set()

    def progress(self, owned: Optional[int] = None) -> float:
        """Percentage of pieces owned"""
        if owned is None:
            owned = self.bitmap.count()
        return (owned / self.piece_count) * 100
