"""Stateful core: config, context cache, skills, audit and sessions."""

from .audit import AuditLog
from .cache import BUNDLE_ALIASES, ContextCacheManager, SingleFlight
from .config import ConfigStore, PamConfig, PamPaths
from .reflection import ReflectionService
from .sessions import SessionManager, generate_session_id
from .skills import SkillRegistry, check_params, validate_params

__all__ = [
    "AuditLog",
    "BUNDLE_ALIASES",
    "ConfigStore",
    "ContextCacheManager",
    "PamConfig",
    "PamPaths",
    "ReflectionService",
    "SessionManager",
    "SingleFlight",
    "SkillRegistry",
    "check_params",
    "generate_session_id",
    "validate_params",
]
