"""
HTTP client for the PAM backend.

One thin wrapper over ``requests.Session`` that attaches identity headers,
applies the configured timeout, and maps transport failures onto
``BackendError`` / ``BackendTimeoutError``. Calls are never retried here:
skill invocations may have side effects on the backend.
"""

import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from ..core.config import PamConfig
from ..exceptions import BackendError, BackendTimeoutError
from ..models.schemas import (
    MemoryEntry,
    MemorySearchResult,
    MemoryStatus,
    Reflection,
    RemoteSkillLogEntry,
)
from ..utils.logging import get_logger

API_PREFIX = "/api/chief-of-staff"


def status_category(status_code: int) -> str:
    """Map an HTTP status to a BackendError category."""
    if status_code in (401, 403):
        return "auth"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    return "server_error"


class BackendClient:
    """
    Request/response access to the PAM backend.

    Example:
        client = BackendClient(config)
        reply = client.chat("cos_20260101_120000_deadbeef", "What's on today?")
    """

    def __init__(self, config: PamConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.api_url
        self.timeout = config.request_timeout_seconds
        self.logger = get_logger(__name__)
        self._session = session or requests.Session()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.user_email:
            headers["X-User-Email"] = self.config.user_email
        if self.config.credential:
            headers["X-PAM-CLI-Key"] = self.config.credential
        return headers

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        timeout = timeout or self.timeout
        start = time.perf_counter()

        self.logger.debug("backend_request", operation=operation, method=method, url=url)

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(),
                timeout=timeout,
            )
        except requests.Timeout as e:
            self.logger.warning("backend_timeout", operation=operation, timeout=timeout)
            raise BackendTimeoutError(operation, timeout) from e
        except requests.RequestException as e:
            self.logger.warning("backend_unreachable", operation=operation, error=str(e))
            raise BackendError(str(e), operation=operation, category="connection") from e

        latency_ms = (time.perf_counter() - start) * 1000
        self.logger.debug(
            "backend_response",
            operation=operation,
            status_code=response.status_code,
            latency_ms=round(latency_ms, 1),
        )

        if response.status_code >= 400:
            body = (response.text or "").strip()
            raise BackendError(
                body[:500] or f"HTTP {response.status_code}",
                operation=operation,
                category=status_category(response.status_code),
                status_code=response.status_code,
            )

        return response

    def _json(self, response: requests.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                f"Invalid JSON in response: {e}",
                operation=operation,
                category="invalid_response",
                status_code=response.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> str:
        self._request("GET", "/api/health", "health check")
        return "Healthy"

    def health_detailed(self) -> Dict[str, Any]:
        response = self._request("GET", "/api/health/detailed", "database health check")
        return self._json(response, "database health check")

    def context_debug(self) -> Dict[str, Any]:
        response = self._request("GET", f"{API_PREFIX}/context-debug", "context source check")
        return self._json(response, "context source check")

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat(self, session_id: str, message: str) -> str:
        operation = "chat"
        response = self._request(
            "POST",
            f"{API_PREFIX}/chat",
            operation,
            json={"message": message, "user": self.config.user_email, "session_id": session_id},
        )
        data = self._json(response, operation)
        if not isinstance(data, dict) or "response" not in data:
            raise BackendError(
                "Chat response missing 'response'", operation=operation, category="invalid_response"
            )
        return data["response"]

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    def list_skills(self) -> List[Dict[str, Any]]:
        operation = "list skills"
        data = self._json(self._request("GET", f"{API_PREFIX}/skills", operation), operation)
        skills = data.get("skills", []) if isinstance(data, dict) else data
        if not isinstance(skills, list):
            raise BackendError("Skill list is not an array", operation=operation, category="invalid_response")
        return skills

    def invoke_skill(
        self,
        skill: str,
        params: Dict[str, Any],
        invocation_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        operation = f"invoke skill '{skill}'"
        body: Dict[str, Any] = {
            "skill_key": skill,
            "params": params,
            "user_email": self.config.user_email,
            "session_id": invocation_id or f"cli_{int(time.time())}",
        }
        if dry_run:
            body["dry_run"] = True

        data = self._json(self._request("POST", f"{API_PREFIX}/skill", operation, json=body), operation)
        if not isinstance(data, dict):
            return {"result": data}
        return data

    def skill_log(self, skill: Optional[str] = None, limit: int = 20) -> List[RemoteSkillLogEntry]:
        operation = "skill log"
        params: Dict[str, Any] = {"limit": limit}
        if skill:
            params["skill"] = skill
        data = self._json(self._request("GET", f"{API_PREFIX}/skill-log", operation, params=params), operation)
        return [RemoteSkillLogEntry(**entry) for entry in data]

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def memory_status(self) -> MemoryStatus:
        operation = "memory status"
        return MemoryStatus(**self._json(self._request("GET", f"{API_PREFIX}/memory/status", operation), operation))

    def search_memories(self, query: str, limit: int = 10) -> List[MemorySearchResult]:
        operation = "memory search"
        params = {"query": query, "limit": limit, "user": self.config.user_email}
        data = self._json(self._request("GET", f"{API_PREFIX}/memory/search", operation, params=params), operation)
        return [MemorySearchResult(**item) for item in data]

    def list_memories(self, limit: int = 20) -> List[MemoryEntry]:
        operation = "memory list"
        params = {"limit": limit, "user": self.config.user_email}
        data = self._json(self._request("GET", f"{API_PREFIX}/memory/list", operation, params=params), operation)
        return [MemoryEntry(**item) for item in data]

    def index_memory(self, content: str, tags: Sequence[str] = ()) -> str:
        operation = "memory index"
        data = self._json(
            self._request("POST", f"{API_PREFIX}/memory/index", operation, json={"content": content, "tags": list(tags)}),
            operation,
        )
        return str(data.get("id", "unknown"))

    def clear_memories(self, user: Optional[str] = None) -> int:
        """Delete every memory stored for ``user``; returns the number removed."""
        operation = "memory clear"
        body = {"user": user or self.config.user_email}
        data = self._json(self._request("POST", f"{API_PREFIX}/memory/clear", operation, json=body), operation)
        return int(data.get("deleted_count", 0) or 0)

    # ------------------------------------------------------------------
    # Context objects
    # ------------------------------------------------------------------

    def context_head(self, object_name: str) -> Optional[str]:
        """Version (ETag or Last-Modified) of a context object, without its body."""
        response = self._request("HEAD", f"{API_PREFIX}/context/{object_name}", f"check context '{object_name}'")
        return _version_of(response)

    def context_fetch(self, object_name: str) -> Tuple[str, Optional[str]]:
        """Full content and version of a context object."""
        response = self._request("GET", f"{API_PREFIX}/context/{object_name}", f"fetch context '{object_name}'")
        return response.text, _version_of(response)

    # ------------------------------------------------------------------
    # Reflection
    # ------------------------------------------------------------------

    def generate_reflection(self, session_ids: Sequence[str], transcript: List[Dict[str, Any]]) -> Reflection:
        operation = "generate reflection"
        body = {
            "user_email": self.config.user_email,
            "sessions": list(session_ids),
            "transcript": transcript,
        }
        return Reflection(**self._json(self._request("POST", f"{API_PREFIX}/reflect", operation, json=body), operation))

    def save_reflection(self, reflection: Reflection) -> str:
        operation = "save reflection"
        body = {"user_email": self.config.user_email, "reflection": reflection.model_dump()}
        data = self._json(self._request("POST", f"{API_PREFIX}/reflection/save", operation, json=body), operation)
        return str(data.get("id", "unknown"))


def _version_of(response: requests.Response) -> Optional[str]:
    return response.headers.get("ETag") or response.headers.get("Last-Modified")
