"""Tests for logging setup."""

import logging
import sys

from loguru import logger

from otpgate.core.logger import InterceptHandler, correlation_id_ctx, setup_structured_logging


def test_setup_routes_stdlib_and_tags_correlation_id(tmp_path):
    """Test sinks, stdlib interception and correlation id injection."""
    logs_dir = tmp_path / "logs"
    setup_structured_logging(level="DEBUG", json_format=True, logs_dir=logs_dir)
    try:
        records = []
        logger.add(lambda message: records.append(message.record), level="DEBUG")

        token = correlation_id_ctx.set("req-1")
        try:
            logger.info("hello")
        finally:
            correlation_id_ctx.reset(token)
        logging.getLogger("uvicorn.error").warning("from stdlib")

        assert logs_dir.is_dir()
        assert records[0]["message"] == "hello"
        assert records[0]["extra"]["correlation_id"] == "req-1"
        assert records[1]["message"] == "from stdlib"
        assert "correlation_id" not in records[1]["extra"]
    finally:
        logger.remove()
        logger.add(sys.stderr)
        logging.root.handlers = [
            h for h in logging.root.handlers if not isinstance(h, InterceptHandler)
        ]
