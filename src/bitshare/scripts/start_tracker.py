import argparse
import logging

from ..common.config import TRACKER_PORT, LOG_LEVEL, env_default
from ..common.log import setup_logging
from ..tracker.status_api import start_status_api
from ..tracker.tracker_server import TrackerServer

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Starts the BitShare tracker.")
    parser.add_argument('--host', type=str, default='0.0.0.0', help='Address to bind')
    parser.add_argument('--port', type=int, default=env_default('TRACKER_PORT', TRACKER_PORT),
                        help='Tracker port')
    parser.add_argument('--status-port', type=int, default=None,
                        help='Also serve the read-only HTTP status API on this port')
    parser.add_argument('--log-level', type=str, default=env_default('LOG_LEVEL', LOG_LEVEL))
    parser.add_argument('--log-file', type=str, default=None)
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_file)
    tracker = TrackerServer(args.host, args.port)
    if args.status_port:
        start_status_api(tracker.registry, args.host, args.status_port)

    try:
        tracker.serve_forever()
    except KeyboardInterrupt:
        logger.info("Tracker interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
