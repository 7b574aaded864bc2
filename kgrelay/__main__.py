"""kgrelay process entry-point.

Usage:
    python -m kgrelay [--host HOST] [--port PORT] [--log-level LEVEL]

Logging is configured first so that every module imported afterwards obtains
a working logger; then the FastAPI app is built and served by uvicorn.
Settings come from the environment (and ``.env``); the CLI flags only
override the listen address and the logging knobs.
"""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from pydantic import ValidationError

from kgrelay.core import configure_logging
from kgrelay.core.exceptions import ConfigError
from kgrelay.core.settings import Settings


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="kgrelay",
        description="Request router with per-user scheduled automation.",
    )
    parser.add_argument("--host", default=None, help="Override HOST env var.")
    parser.add_argument("--port", type=int, default=None, help="Override PORT env var.")
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"kgrelay: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    # Lazy import keeps `python -m kgrelay --help` fast.
    from kgrelay.api.app import create_app  # noqa: PLC0415

    try:
        settings = Settings()
        app = create_app(settings)
    except (ConfigError, ValidationError) as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    host = args.host if args.host is not None else settings.host
    port = args.port if args.port is not None else settings.port
    logger.info("Serving on %s:%d", host or "0.0.0.0", port)

    try:
        uvicorn.run(app, host=host or "0.0.0.0", port=port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
