"""
Global settings for the BitShare system
"""
import os
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError

# Tracker settings
TRACKER_HOST = "127.0.0.1"
TRACKER_PORT = 6881
STATUS_API_PORT = 8080

# Peer settings
PEER_HOST = "0.0.0.0"
PIECE_SIZE = 65536  # 64KB per piece
MAX_CONNECTIONS = 10
ACCEPT_RETRY_INTERVAL = 0.5  # seconds to back off after a failed accept()
CONNECTION_TIMEOUT = 30

# Download loop timing
NO_PEERS_RETRY_INTERVAL = 5  # seconds
PASS_RETRY_INTERVAL = 3  # seconds

# Log settings
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Peer modes
MODE_SEED = "seed"
MODE_DOWNLOAD = "download"
PEER_MODES = (MODE_SEED, MODE_DOWNLOAD)


def env_default(name: str, default):
    """Reads a BITSHARE_* environment override, keeping the type of the default"""
    value = os.getenv(f"BITSHARE_{name}")
    if value is None:
        return default
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError:
            raise ConfigError(f"BITSHARE_{name} must be an integer, got {value!r}")
    return value


@dataclass
class PeerConfig:
    """Everything a peer process needs to join the swarm for one file"""
    file_id: str
    file_path: str
    file_size: int
    listen_port: int
    mode: str = MODE_DOWNLOAD
    tracker_host: str = TRACKER_HOST
    tracker_port: int = TRACKER_PORT
    listen_host: str = PEER_HOST
    piece_size: int = PIECE_SIZE
    connection_timeout: Optional[float] = CONNECTION_TIMEOUT
    no_peers_retry_interval: float = NO_PEERS_RETRY_INTERVAL
    pass_retry_interval: float = PASS_RETRY_INTERVAL
    announce_pieces: bool = True

    @property
    def is_seed(self) -> bool:
        return self.mode == MODE_SEED

    def validate(self) -> "PeerConfig":
        """
        Checks the configuration before any socket is opened

        Raises:
            ConfigError: if a value is out of range or the seed file is missing
        """
        if self.mode not in PEER_MODES:
            raise ConfigError(f"Invalid mode: {self.mode!r} (expected one of {', '.join(PEER_MODES)})")
        if not self.file_id or not self.file_id.isascii() or any(ch.isspace() for ch in self.file_id):
            raise ConfigError(f"Invalid file_id: {self.file_id!r}")
        if self.file_size <= 0:
            raise ConfigError(f"File size must be positive, got {self.file_size}")
        if self.piece_size <= 0:
            raise ConfigError(f"Piece size must be positive, got {self.piece_size}")
        for name, port in (("listen_port", self.listen_port), ("tracker_port", self.tracker_port)):
            if not 0 <= port <= 65535:
                raise ConfigError(f"{name} out of range: {port}")
        if self.is_seed and not os.path.isfile(self.file_path):
            raise ConfigError(f"File not found: {self.file_path}")
        return self
