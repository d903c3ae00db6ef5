"""
Logging module - structured logging with a HUMAN progress level.
"""

from .human import HUMAN, HumanFormatter, HumanLog, HumanLogHandler
from .setup import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "HUMAN",
    "HumanFormatter",
    "HumanLog",
    "HumanLogHandler",
]
