"""
Backend API access.
"""

from .client import BackendClient
from .storage import BundleSource, HttpBundleSource

__all__ = ["BackendClient", "BundleSource", "HttpBundleSource"]
