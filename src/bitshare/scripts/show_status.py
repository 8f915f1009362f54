import argparse
import json

from ..common.errors import TrackerError
from ..tracker.status_api import StatusClient


def main(argv=None):
    parser = argparse.ArgumentParser(description="Shows the state of a BitShare tracker.")
    parser.add_argument('url', help='Status API base URL, e.g. http://127.0.0.1:8080')
    parser.add_argument('--file-id', type=str, default=None, help='List the peers of one file')
    args = parser.parse_args(argv)

    client = StatusClient(args.url)
    try:
        if args.file_id:
            result = {"file_id": args.file_id, "peers": client.get_file_peers(args.file_id)}
        else:
            result = {"stats": client.get_stats(), "files": client.list_files()}
    except TrackerError as e:
        print(f"error: {e}")
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
