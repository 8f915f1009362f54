"""
A complete peer: upload server, download loop and tracker client for one file
"""
import time
import threading
import logging
from typing import Dict, Optional

from ..common.config import PeerConfig
from ..common.errors import TrackerError
from ..tracker.tracker_api import TrackerAPI
from .downloader import Downloader
from .file_store import FileStore
from .session import FileSession
from .uploader import PeerServer

logger = logging.getLogger(__name__)


class PeerNode:
    def __init__(self, config: PeerConfig, tracker: Optional[TrackerAPI] = None):
        self.config = config.validate()

        # Main components
        self.session = FileSession.from_config(config)
        self.store = FileStore(self.session)
        self.server = PeerServer(self.session, self.store,
                                 host=config.listen_host, port=config.listen_port,
                                 timeout=config.connection_timeout)
        self.tracker = tracker or TrackerAPI(config.tracker_host, config.tracker_port,
                                             timeout=config.connection_timeout)
        self.downloader: Optional[Downloader] = None
        self.download_thread: Optional[threading.Thread] = None

        self.is_running = False
        self.start_time = 0.0
        self._completed = threading.Event()
        if self.session.is_complete():
            self._completed.set()

    @property
    def port(self) -> int:
        return self.server.port

    def start(self) -> None:
        """
        Starts serving, registers with the tracker and, in download mode,
        launches the download loop

        Raises:
            TrackerError: the initial registration failed
            OSError: the listen port could not be bound
        """
        self.start_time = time.time()
        self.server.start()
        self.is_running = True

        try:
            self.tracker.register(self.session.file_id, self.port, self.session.bitmap.snapshot())
        except TrackerError:
            logger.error("Failed to register to tracker")
            self.stop()
            raise

        if not self.session.is_complete():
            self.downloader = Downloader(
                self.session, self.store, self.tracker, self.port,
                timeout=self.config.connection_timeout,
                no_peers_retry_interval=self.config.no_peers_retry_interval,
                pass_retry_interval=self.config.pass_retry_interval,
                announce_pieces=self.config.announce_pieces,
            )
            self.download_thread = threading.Thread(target=self._download_loop, name="downloader", daemon=True)
            self.download_thread.start()
        else:
            logger.info("Seeding...")

    def _download_loop(self) -> None:
        try:
            if self.downloader.run():
                logger.info("Download complete! Now seeding...")
                self._completed.set()
        except Exception as e:
            logger.error(f"Download loop crashed: {e}")

    def wait_for_completion(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the local file is complete; returns False on timeout"""
        return self._completed.wait(timeout)

    def stop(self) -> None:
        logger.info(f"Stopping peer on port {self.port}")
        self.is_running = False
        if self.downloader:
            self.downloader.stop()
        self.server.stop()

    def get_statistics(self) -> Dict:
        stats = {
            'file_id': self.session.file_id,
            'pieces_owned': self.session.bitmap.count(),
            'piece_count': self.session.piece_count,
            'progress': round(self.session.progress(), 1),
            'uptime': int(time.time() - self.start_time) if self.start_time else 0,
        }
        stats.update(self.server.get_statistics())
        if self.downloader:
            stats.update(self.downloader.get_statistics())
        return stats
