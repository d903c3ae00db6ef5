"""
Shared fixtures: every test starts from a configured, silent logging setup.
"""

import logging

import pytest
import structlog

from skillman.config import LoggingConfig
from skillman.logging import configure_logging


@pytest.fixture(autouse=True)
def quiet_logging():
    configure_logging(LoggingConfig(), quiet=True)
    yield
    logging.root.handlers.clear()
    structlog.reset_defaults()
