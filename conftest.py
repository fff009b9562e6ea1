"""Global pytest configuration for logging setup.

Ensures caplog sees records from every devstack module regardless of what a
previous test did to logger configuration.
"""

import logging

import pytest

DEVSTACK_LOGGERS = [
    "devstack.startup",
    "devstack.core",
]


@pytest.fixture(autouse=True)
def setup_logging() -> None:
    """Reset devstack loggers so caplog can capture them."""
    for logger_name in DEVSTACK_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = True

    # setup_logging() in the CLI turns propagation off for the package logger
    package_logger = logging.getLogger("devstack")
    package_logger.propagate = True
    package_logger.handlers.clear()
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def configure_caplog(caplog: pytest.LogCaptureFixture) -> None:
    """Capture DEBUG records from all devstack modules."""
    caplog.set_level(logging.DEBUG)
    for logger_name in DEVSTACK_LOGGERS:
        caplog.set_level(logging.DEBUG, logger=logger_name)
