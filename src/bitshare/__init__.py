"""
BitShare - tracker-coordinated peer-to-peer file distribution
"""

__version__ = "0.1.0"
