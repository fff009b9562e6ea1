"""Tests for logging configuration."""

from __future__ import annotations

import logging

from devstack.core.logging_config import setup_logging


class TestSetupLogging:
    """Test setup_logging."""

    def test_level_from_settings(self) -> None:
        setup_logging("info")

        logger = logging.getLogger("devstack")
        assert logger.level == logging.INFO
        assert logger.propagate is False
        assert logger.handlers[0].formatter._fmt.startswith("%(asctime)s | %(levelname)s")

    def test_debug_uses_detailed_format(self) -> None:
        setup_logging("WARNING", debug=True)

        logger = logging.getLogger("devstack")
        assert logger.level == logging.DEBUG
        assert "%(funcName)s" in logger.handlers[0].formatter._fmt

    def test_httpx_kept_quiet(self) -> None:
        setup_logging("DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING
