"""Exception classes with rich context"""

from typing import Any
from datetime import datetime


class PamError(Exception):
    """Base exception with context and metadata"""

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
        user_message: str | None = None,
    ):
        """
        Initialize exception with context.

        Args:
            message: Technical error message for logs
            details: Additional context (dict for structured logging)
            recoverable: Whether the caller may retry the operation
            user_message: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.user_message = user_message or message
        self.timestamp = datetime.now()

    def __str__(self) -> str:
        parts = [self.message]

        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({details_str})")

        if self.recoverable:
            parts.append("[recoverable]")

        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "user_message": self.user_message,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigMissingError(PamError):
    """No usable configuration was found"""

    exit_code = 3

    def __init__(self, path: Any):
        super().__init__(
            message=f"Configuration not found at {path}",
            details={"path": str(path)},
            user_message=f"No configuration found at {path}. Run `pam config init` first.",
        )
        self.path = path


class ConfigExistsError(PamError):
    """Refusing to overwrite an existing configuration file"""

    exit_code = 3

    def __init__(self, path: Any):
        super().__init__(
            message=f"Config file already exists at {path}",
            details={"path": str(path)},
            user_message=f"Config file already exists at {path}. Use --force to overwrite.",
        )
        self.path = path


class UnknownConfigKeyError(PamError):
    """Attempt to set a key that is not part of the configuration"""

    exit_code = 3

    def __init__(self, key: str, allowed: list[str] | None = None):
        allowed = allowed or []
        super().__init__(
            message=f"Unknown config key: {key}",
            details={"key": key},
            user_message=f"Unknown config key '{key}'. Valid keys: {', '.join(allowed)}",
        )
        self.key = key
        self.allowed = allowed


class InvalidConfigValueError(PamError):
    """Configuration value failed validation"""

    exit_code = 3

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid value for {key}: {reason}",
            details={"key": key},
            user_message=f"Invalid value for '{key}': {reason}",
        )
        self.key = key
        self.value = value
        self.reason = reason


class NotFoundError(PamError):
    """A session, context bundle or skill does not exist"""

    exit_code = 4

    def __init__(self, kind: str, name: str):
        super().__init__(
            message=f"{kind} not found: {name}",
            details={"kind": kind, "name": name},
            user_message=f"No {kind} named '{name}'.",
        )
        self.kind = kind
        self.name = name


class SchemaViolationError(PamError):
    """Skill parameters do not satisfy the skill's schema"""

    exit_code = 5

    def __init__(self, field: str, reason: str, skill_name: str | None = None):
        details = {"field": field, "reason": reason}
        if skill_name:
            details["skill"] = skill_name

        super().__init__(
            message=f"Schema violation on '{field}': {reason}",
            details=details,
            user_message=f"Invalid parameter '{field}': {reason}",
        )
        self.field = field
        self.reason = reason
        self.skill_name = skill_name


class SessionClosedError(PamError):
    """Message appended to a session that is not active"""

    exit_code = 6

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session {session_id} is closed",
            details={"session_id": session_id},
            user_message=f"Session {session_id} is closed. Resume it before sending messages.",
        )
        self.session_id = session_id


class BackendError(PamError):
    """Backend API errors with the HTTP status/category preserved"""

    exit_code = 7

    def __init__(
        self,
        message: str,
        operation: str,
        category: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details.update({"operation": operation, "category": category})
        if status_code is not None:
            details["status_code"] = status_code

        if category == "auth":
            user_message = f"{operation}: authentication failed. Check your CLI API key."
        elif category == "rate_limited":
            user_message = f"{operation}: rate limit exceeded. Please try again in a moment."
        elif category == "connection":
            user_message = f"{operation}: could not reach the backend."
        else:
            user_message = f"{operation} failed: {message}"

        super().__init__(
            message=message,
            details=details,
            recoverable=category in ("rate_limited", "connection", "server_error"),
            user_message=user_message,
        )
        self.operation = operation
        self.category = category
        self.status_code = status_code


class BackendTimeoutError(PamError):
    """A backend call exceeded its timeout"""

    exit_code = 8

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            message=f"{operation} timed out after {timeout}s",
            details={"operation": operation, "timeout": timeout},
            recoverable=True,
            user_message=f"{operation} timed out after {timeout}s.",
        )
        self.operation = operation
        self.timeout = timeout


class StateWriteError(PamError):
    """An atomic write of local state failed; previous state is intact"""

    exit_code = 9

    def __init__(self, path: Any, reason: str):
        super().__init__(
            message=f"Failed to write {path}: {reason}",
            details={"path": str(path)},
        )
        self.path = path
        self.reason = reason


class StateReadError(PamError):
    """A local state file exists but could not be parsed"""

    exit_code = 10

    def __init__(self, path: Any, reason: str):
        super().__init__(
            message=f"Failed to read {path}: {reason}",
            details={"path": str(path)},
            user_message=f"{path} is unreadable or corrupt: {reason}",
        )
        self.path = path
        self.reason = reason


class CacheWriteError(StateWriteError):
    """A context bundle could not be written to the local cache"""


class InterruptedOperationError(PamError):
    """The user interrupted a running operation"""

    exit_code = 130

    def __init__(self, operation: str):
        super().__init__(
            message=f"{operation} interrupted",
            details={"operation": operation},
            user_message=f"{operation} was interrupted.",
        )
        self.operation = operation
