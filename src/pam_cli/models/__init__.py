"""
Pydantic models and schemas for the PAM CLI.
"""

from .enums import (
    AuditOutcome,
    LogLevel,
    MessageRole,
    ParamType,
    ReplState,
    SessionStatus,
    StaleReason,
)
from .schemas import (
    AuditRecord,
    BundleRefreshOutcome,
    BundleStatus,
    CacheStats,
    ContextBundle,
    InvocationResult,
    Message,
    ParameterSpec,
    Reflection,
    RefreshReport,
    Session,
    SkillDescriptor,
    TestReport,
)
from .values import JsonTag, JsonValue, UnsupportedValueError

__all__ = [
    "AuditOutcome",
    "AuditRecord",
    "BundleRefreshOutcome",
    "BundleStatus",
    "CacheStats",
    "ContextBundle",
    "InvocationResult",
    "JsonTag",
    "JsonValue",
    "LogLevel",
    "Message",
    "MessageRole",
    "ParamType",
    "ParameterSpec",
    "Reflection",
    "RefreshReport",
    "ReplState",
    "Session",
    "SessionStatus",
    "SkillDescriptor",
    "StaleReason",
    "TestReport",
    "UnsupportedValueError",
]
