"""
Pytest configuration and shared fixtures.
"""

import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Set, Tuple
from unittest.mock import create_autospec

import pytest

from pam_cli.api.client import BackendClient
from pam_cli.api.storage import BundleSource
from pam_cli.core.audit import AuditLog
from pam_cli.core.config import DEFAULT_CONTEXT_BUNDLES, PamConfig, PamPaths
from pam_cli.core.sessions import SessionManager
from pam_cli.exceptions import BackendError
from pam_cli.models.schemas import SkillDescriptor


class FakeClock:
    """Settable time source for freshness tests."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 6, 3, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeBundleSource(BundleSource):
    """In-memory remote storage that counts requests."""

    def __init__(self, objects: Optional[Dict[str, Tuple[str, Optional[str]]]] = None):
        self.objects = dict(objects or {})
        self.failing: Set[str] = set()
        self.head_calls = 0
        self.fetch_calls = 0
        self.fetch_gate: Optional[threading.Event] = None
        self.fetch_started = threading.Event()
        self._lock = threading.Lock()

    def head(self, object_name: str) -> Optional[str]:
        with self._lock:
            self.head_calls += 1
        if object_name in self.failing:
            raise BackendError("unavailable", operation=f"check context '{object_name}'", category="server_error", status_code=503)
        return self.objects[object_name][1]

    def fetch(self, object_name: str) -> Tuple[str, Optional[str]]:
        with self._lock:
            self.fetch_calls += 1
        self.fetch_started.set()
        if self.fetch_gate is not None:
            self.fetch_gate.wait(timeout=5)
        if object_name in self.failing or object_name not in self.objects:
            raise BackendError("not found", operation=f"fetch context '{object_name}'", category="not_found", status_code=404)
        return self.objects[object_name]

    @property
    def network_calls(self) -> int:
        return self.head_calls + self.fetch_calls


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep PAM_* variables and any .env file out of every test."""
    for key in list(os.environ):
        if key.startswith("PAM_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def temp_dir():
    """Temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def paths(temp_dir):
    return PamPaths(temp_dir / "pam")


@pytest.fixture
def config():
    return PamConfig.from_file(
        None,
        user_email="alice@example.com",
        cli_api_key="s3cret-key",
        freshness_window_seconds=3600,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bundle_source():
    """Remote objects for every default bundle, each with a version."""
    return FakeBundleSource(
        {
            object_name: (f"# {name}\ncontent for {name}\n", f'"v1-{name}"')
            for name, object_name in DEFAULT_CONTEXT_BUNDLES.items()
        }
    )


@pytest.fixture
def fake_client():
    """BackendClient double with the real method signatures."""
    client = create_autospec(BackendClient, instance=True)
    client.chat.return_value = "Hello from PAM"
    client.list_skills.return_value = []
    return client


@pytest.fixture
def audit_log(paths):
    return AuditLog(paths.audit_file)


@pytest.fixture
def session_manager(paths, clock):
    return SessionManager(paths.sessions_dir, "alice@example.com", clock=clock)


@pytest.fixture
def jira_query():
    """Descriptor requiring a string ``query``."""
    return SkillDescriptor.from_backend(
        {
            "skill_key": "jira-query",
            "description": "Answer questions about Jira",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Question"},
                    "max_results": {"type": "integer"},
                },
                "required": ["query"],
            },
        }
    )


@pytest.fixture
def strict_skill():
    return SkillDescriptor.from_backend(
        {
            "skill_key": "jira-create",
            "description": "Create a Jira issue",
            "parameters": {
                "type": "object",
                "properties": {
                    "project": {"type": "string"},
                    "summary": {"type": "string"},
                    "priority": {"type": "number"},
                },
                "required": ["project", "summary"],
                "additionalProperties": False,
            },
        }
    )
