"""
Utility modules for the PAM CLI.
"""

from .logging import get_logger, setup_logging
from .rich_logging import PamConsole, setup_rich_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "PamConsole",
    "setup_rich_logging",
]
