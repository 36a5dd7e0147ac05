"""Enums for type-safe settings and state.

This module provides the enum types shared by the session, cache, skill
and audit components.
"""

from enum import Enum


class LogLevel(str, Enum):
    """Standard logging levels.

    Attributes:
        DEBUG: Detailed diagnostic information
        INFO: General informational messages
        WARNING: Warning messages for potentially problematic situations
        ERROR: Error messages for serious problems
        CRITICAL: Critical messages for severe errors
    """
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        """Return the enum value as a string for serialization."""
        return self.value


class MessageRole(str, Enum):
    """Author of a message in a chat session."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    def __str__(self) -> str:
        return self.value


class SessionStatus(str, Enum):
    """Lifecycle state of a persisted chat session.

    A session that has never been created has no status at all; once
    created it moves between ACTIVE and CLOSED.
    """
    ACTIVE = "active"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class AuditOutcome(str, Enum):
    """Outcome of a skill invocation attempt.

    Attributes:
        PENDING: Request sent, no answer recorded yet
        SUCCESS: Backend reported success
        FAILURE: Backend or transport failure (reason recorded separately)
        TIMEOUT: The request exceeded the configured timeout
    """
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"

    def __str__(self) -> str:
        return self.value


class ParamType(str, Enum):
    """Declared type of a skill parameter."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"

    def __str__(self) -> str:
        return self.value


class StaleReason(str, Enum):
    """Why a context bundle is considered stale."""
    NOT_CACHED = "not_cached"
    AGE = "age"
    REMOTE_CHANGED = "remote_changed"

    def __str__(self) -> str:
        return self.value


class ReplState(str, Enum):
    """States of the interactive chat loop."""
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    PROCESSING = "processing"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value
