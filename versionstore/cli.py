"""Command line entry point of the storage server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from .errors import StorageError
from .server import StoreServerManager

DEFAULT_DATA_PATH = "./ss_data"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command line options."""
    parser = argparse.ArgumentParser(
        prog="versionstore", description="Run the storage server."
    )
    parser.add_argument(
        "-d",
        "--data-path",
        default=DEFAULT_DATA_PATH,
        help="directory that holds the stored data",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Start the storage server and run it until it stops."""
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    print(f"Starting Storage Server (SS)... data path: {args.data_path}")
    manager = StoreServerManager(args.data_path)
    try:
        asyncio.run(manager.start())
    except KeyboardInterrupt:
        return 0
    except (StorageError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())