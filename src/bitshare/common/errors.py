"""
Exception hierarchy shared by the tracker and the peer engines
"""


class BitshareError(Exception):
    """Base class for every error raised by bitshare"""


class ConnectionClosed(BitshareError, ConnectionError):
    """The remote side went away, or a frame could not be fully transferred"""


class ProtocolError(BitshareError):
    """A line or frame did not match what the protocol expects at this point"""


class PieceStoreError(BitshareError, IOError):
    """A piece could not be read from or written to the local file"""


class TrackerError(BitshareError):
    """The tracker could not be reached or answered with an error"""


class ConfigError(BitshareError, ValueError):
    """Invalid configuration value"""
