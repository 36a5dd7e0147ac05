"""
Read-only access to remote context bundle objects.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .client import BackendClient


class BundleSource(ABC):
    """Abstract base class for remote bundle storage."""

    @abstractmethod
    def head(self, object_name: str) -> Optional[str]:
        """Return the current version/etag of an object without its content."""
        pass

    @abstractmethod
    def fetch(self, object_name: str) -> Tuple[str, Optional[str]]:
        """Return the full content of an object and its version/etag."""
        pass


class HttpBundleSource(BundleSource):
    """Context objects served by the backend from cloud storage."""

    def __init__(self, client: BackendClient):
        self._client = client

    def head(self, object_name: str) -> Optional[str]:
        return self._client.context_head(object_name)

    def fetch(self, object_name: str) -> Tuple[str, Optional[str]]:
        return self._client.context_fetch(object_name)
