#!/usr/bin/env python3
"""
OTP Gateway - one-time passcodes over paired messaging sessions.

Main entry point for the application.
"""

import argparse
import logging
import sys

import uvicorn

from otpgate.core.config.settings import get_settings
from otpgate.core.logger import setup_structured_logging


def parse_safe_port(value: str) -> int:
    """
    Parse a TCP port for the HTTP server.

    Raises:
        argparse.ArgumentTypeError: If the value is not a port in 1024-65535
    """
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port: {value}")
    if not 1024 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Port must be between 1024 and 65535, got {port}")
    return port


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="OTP Gateway - messaging OTP service")
    # Default to localhost only; pass --host 0.0.0.0 to bind to all interfaces
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=parse_safe_port, default=8000, help="Bind port")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL)",
    )
    args = parser.parse_args()

    try:
        settings = get_settings()
    except Exception as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    level = args.log_level or settings.log_level
    setup_structured_logging(level, json_format=settings.log_json)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting OTP Gateway on {args.host}:{args.port}")

    from web.app import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=level.lower())


if __name__ == "__main__":
    main()
