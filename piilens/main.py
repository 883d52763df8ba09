"""Main entry point for piilens.

Starts the FastAPI server with uvicorn.  Settings come from the
environment (``PIILENS_*``) and, optionally, a JSON file.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from piilens.config import load_settings
from piilens.structured_logging import setup_logging

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8910


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="piilens", description="PII detection service")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--config", type=Path, default=None, help="JSON settings file")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    settings = load_settings(args.config)
    setup_logging(settings.log_format, settings.log_level)

    from piilens.api.server import create_app

    log = logging.getLogger("piilens")
    log.info("Starting on %s:%d", args.host, args.port)
    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
