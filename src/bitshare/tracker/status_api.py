"""
Read-only HTTP view of the tracker registry, and a client for it
"""
import threading
import logging
from typing import Dict, List, Optional

import requests
from flask import Flask, jsonify

from ..common.config import CONNECTION_TIMEOUT
from ..common.errors import TrackerError
from .tracker_server import Registry

logger = logging.getLogger(__name__)


def create_app(registry: Registry) -> Flask:
    app = Flask(__name__)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok"})

    @app.route('/stats', methods=['GET'])
    def stats():
        return jsonify(registry.get_stats())

    @app.route('/files', methods=['GET'])
    def files():
        return jsonify({"files": registry.file_ids()})

    @app.route('/files/<file_id>/peers', methods=['GET'])
    def file_peers(file_id):
        records = registry.peer_records(file_id)
        if not records:
            return jsonify({"error": f"unknown file_id {file_id}"}), 404
        return jsonify({
            "file_id": file_id,
            "peers": [record.to_dict() for record in records],
        })

    return app


def start_status_api(registry: Registry, host: str, port: int) -> threading.Thread:
    """Runs the status API in a daemon thread next to the TCP tracker"""
    app = create_app(registry)
    thread = threading.Thread(
        target=app.run,
        kwargs={"host": host, "port": port, "use_reloader": False, "threaded": True},
        name="tracker-status-api",
        daemon=True,
    )
    thread.start()
    logger.info(f"Status API listening on http://{host}:{port}")
    return thread


class StatusClient:
    """Fetches tracker status over HTTP"""

    def __init__(self, base_url: str, timeout: Optional[float] = CONNECTION_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str) -> Dict:
        try:
            response = self.session.get(f"{self.base_url}{path}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise TrackerError(f"Status request {path} failed: {e}") from e

    def get_stats(self) -> Dict:
        return self._get('/stats')

    def list_files(self) -> List[str]:
        return self._get('/files').get('files', [])

    def get_file_peers(self, file_id: str) -> List[Dict]:
        return self._get(f'/files/{file_id}/peers').get('peers', [])
