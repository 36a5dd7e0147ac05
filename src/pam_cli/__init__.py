"""
PAM CLI - Chief of Staff Command-Line Client
Local session, context cache and skill invocation engine for the PAM backend
"""

__version__ = "0.1.0"

from .core.config import ConfigStore, PamConfig, PamPaths
from .exceptions import PamError

__all__ = [
    "ConfigStore",
    "PamConfig",
    "PamPaths",
    "PamError",
    "__version__",
]
