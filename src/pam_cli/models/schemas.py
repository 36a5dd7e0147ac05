"""
Core Pydantic schemas for the PAM CLI.

These schemas define the data contracts shared by the session manager,
the context cache, the skill invoker and the audit log, and the shapes
returned by the backend API.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import AuditOutcome, MessageRole, ParamType, SessionStatus, StaleReason


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# ============================================================================
# Sessions
# ============================================================================


class Message(BaseModel):
    """A single message in a chat session."""

    role: MessageRole
    text: str
    timestamp: datetime = Field(default_factory=utc_now)


class Session(BaseModel):
    """A chat session persisted under its session_id."""

    session_id: str
    user_email: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    closed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def started_at(self) -> Optional[datetime]:
        """Timestamp of the first message, if any."""
        return self.messages[0].timestamp if self.messages else None


# ============================================================================
# Context bundles
# ============================================================================


class ContextBundle(BaseModel):
    """A named blob of grounding data mirrored from remote storage."""

    name: str = Field(..., description="Logical bundle name, e.g. 'github'")
    object_name: str = Field(..., description="Remote object the bundle mirrors")
    content: str
    fetched_at: datetime
    remote_version: Optional[str] = Field(
        default=None, description="ETag/version of the remote object at last fetch"
    )
    freshness_window_seconds: int = Field(default=3600, ge=0)

    @property
    def size_bytes(self) -> int:
        return len(self.content.encode("utf-8"))

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(seconds=self.freshness_window_seconds)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utc_now()) - self.fetched_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once the bundle is at least one freshness window old."""
        return self.age(now) >= self.freshness_window


class BundleStatus(BaseModel):
    """Freshness report for one bundle."""

    name: str
    cached: bool
    fetched_at: Optional[datetime] = None
    age_seconds: Optional[float] = None
    size_bytes: int = 0
    remote_version: Optional[str] = None
    is_stale: bool
    stale_reason: Optional[StaleReason] = None
    remote_checked: bool = False
    remote_check_error: Optional[str] = None


class BundleRefreshOutcome(BaseModel):
    """Result of refreshing a single bundle."""

    name: str
    success: bool
    size_bytes: int = 0
    remote_version: Optional[str] = None
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None


class RefreshReport(BaseModel):
    """Per-bundle outcomes of a refresh."""

    outcomes: List[BundleRefreshOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> List[BundleRefreshOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[BundleRefreshOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def all_ok(self) -> bool:
        return not self.failed

    @property
    def total_bytes(self) -> int:
        return sum(o.size_bytes for o in self.succeeded)


class CacheStats(BaseModel):
    """Aggregate statistics over the local bundle cache."""

    bundle_count: int
    total_bytes: int
    oldest_fetched_at: Optional[datetime] = None
    stale_count: int
    estimated_tokens: int = Field(..., description="Rough token estimate (bytes / 4)")


# ============================================================================
# Skills
# ============================================================================


class ParameterSpec(BaseModel):
    """Schema of one skill parameter."""

    type: ParamType = ParamType.ANY
    required: bool = False
    description: str = ""


class SkillDescriptor(BaseModel):
    """
    Immutable snapshot of a backend skill.

    Converts from the backend's listing format, which may carry the
    parameter schema either as a flat mapping or as a JSON-schema object.
    """

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "name": "jira-query",
            "description": "Answer questions about Jira issues",
            "parameter_schema": {
                "query": {"type": "string", "required": True}
            },
            "strict": False,
        }
    })

    name: str
    description: str = ""
    parameter_schema: Dict[str, ParameterSpec] = Field(default_factory=dict)
    strict: bool = Field(default=False, description="Reject parameters not in the schema")
    risk_level: str = "safe"
    enabled: bool = True
    usage_count: int = 0

    @property
    def required_parameters(self) -> List[str]:
        return [name for name, spec in self.parameter_schema.items() if spec.required]

    @classmethod
    def from_backend(cls, data: Dict[str, Any]) -> "SkillDescriptor":
        raw_schema = data.get("parameter_schema")
        if raw_schema is None:
            raw_schema = data.get("parameters", {})

        schema: Dict[str, ParameterSpec] = {}
        if isinstance(raw_schema, dict) and "properties" in raw_schema:
            required = set(raw_schema.get("required", []))
            for name, prop in raw_schema["properties"].items():
                schema[name] = ParameterSpec(
                    type=_param_type(prop.get("type")),
                    required=name in required,
                    description=prop.get("description", ""),
                )
            strict = raw_schema.get("additionalProperties") is False
        else:
            for name, prop in (raw_schema or {}).items():
                if isinstance(prop, str):
                    prop = {"type": prop}
                schema[name] = ParameterSpec(
                    type=_param_type(prop.get("type")),
                    required=bool(prop.get("required", False)),
                    description=prop.get("description", ""),
                )
            strict = False

        return cls(
            name=data.get("skill_key") or data["name"],
            description=data.get("description", ""),
            parameter_schema=schema,
            strict=bool(data.get("strict", strict)),
            risk_level=data.get("risk_level", "safe"),
            enabled=data.get("enabled", True),
            usage_count=data.get("usage_count", 0),
        )


def _param_type(value: Any) -> ParamType:
    try:
        return ParamType(value)
    except ValueError:
        return ParamType.ANY


class InvocationResult(BaseModel):
    """Successful skill invocation."""

    invocation_id: str
    skill_name: str
    content: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: float

    def summary(self, limit: int = 200) -> str:
        text = self.content if self.content is not None else json.dumps(self.data, default=str)
        return text if len(text) <= limit else text[:limit] + "..."


class TestReport(BaseModel):
    """Outcome of a dry-run skill test."""

    __test__ = False  # not a pytest test class

    skill_name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    satisfiable: bool
    violations: List[str] = Field(default_factory=list)
    backend_ok: Optional[bool] = None
    duration_ms: Optional[float] = None
    output_preview: Optional[str] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.satisfiable and bool(self.backend_ok)


# ============================================================================
# Audit
# ============================================================================


class AuditRecord(BaseModel):
    """One skill invocation attempt and its outcome."""

    model_config = ConfigDict(frozen=True)

    invocation_id: str
    skill_name: str
    user_email: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    outcome: AuditOutcome = AuditOutcome.PENDING
    reason: Optional[str] = Field(default=None, description="Failure reason, if any")
    result_summary: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.outcome is AuditOutcome.PENDING

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def finalize(
        self,
        outcome: AuditOutcome,
        reason: Optional[str] = None,
        result_summary: Optional[str] = None,
    ) -> "AuditRecord":
        """Return the finished copy of a pending record."""
        return self.model_copy(update={
            "outcome": outcome,
            "reason": reason,
            "result_summary": result_summary,
            "finished_at": utc_now(),
        })


# ============================================================================
# Backend payloads
# ============================================================================


class Reflection(BaseModel):
    """Reflection generated from one or more session transcripts."""

    what_worked: List[str] = Field(default_factory=list)
    what_failed: List[str] = Field(default_factory=list)
    learnings: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)


class MemoryStatus(BaseModel):
    total_memories: int = 0
    total_sessions: int = 0
    total_reflections: int = 0
    tables: List[Dict[str, Any]] = Field(default_factory=list)


class MemorySearchResult(BaseModel):
    title: str
    session_id: str
    content: str = ""
    created_at: str = ""
    relevance_score: float = 0.0


class MemoryEntry(BaseModel):
    session_id: str
    preview: str = ""
    created_at: datetime


class RemoteSkillLogEntry(BaseModel):
    """Skill log entry as recorded by the backend."""

    skill_key: str
    user_email: str = ""
    success: bool
    duration_ms: int = 0
    created_at: str = ""
