"""
Configuration management for the PAM CLI.

Loads settings from environment variables and the persisted YAML config
file, and provides an immutable configuration object that is passed to
every component at construction time.

Configuration precedence (highest to lowest):
1. Explicit keyword arguments (passed to PamConfig)
2. Environment variables (PAM_* prefix)
3. .env file
4. Persisted config file (config.yaml in the PAM config directory)
5. Hardcoded defaults
"""

import os
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Optional

import yaml
from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from ..exceptions import (
    ConfigExistsError,
    ConfigMissingError,
    InvalidConfigValueError,
    StateWriteError,
    UnknownConfigKeyError,
)
from ..models.enums import LogLevel
from ..utils.logging import get_logger
from .storage import atomic_write_text

logger = get_logger(__name__)

SECRET_MASK = "********"

DEFAULT_CONTEXT_BUNDLES = {
    "github": "github_ai_garage.md",
    "jira": "jira_summary.md",
    "daily": "daily_ambitions_summary.md",
    "strategic": "strategic_context_30min.md",
    "tactical": "tactical_context_10min.md",
    "operational": "operational_context_5min.md",
    "database": "database_summary.md",
}

# Config file consulted by YamlFileSettingsSource for the current load
_config_file: ContextVar[Optional[Path]] = ContextVar("pam_config_file", default=None)


@dataclass(frozen=True)
class PamPaths:
    """Locations of all local state under the PAM config directory."""

    base_dir: Path

    @classmethod
    def default(cls) -> "PamPaths":
        """
        Resolve the config directory.

        ``$PAM_CONFIG_DIR`` wins, then ``$XDG_CONFIG_HOME/pam``, then
        ``~/.config/pam``.
        """
        explicit = os.environ.get("PAM_CONFIG_DIR")
        if explicit:
            return cls(Path(explicit).expanduser())
        xdg = os.environ.get("XDG_CONFIG_HOME")
        root = Path(xdg).expanduser() if xdg else Path.home() / ".config"
        return cls(root / "pam")

    @property
    def config_file(self) -> Path:
        return self.base_dir / "config.yaml"

    @property
    def sessions_dir(self) -> Path:
        return self.base_dir / "sessions"

    @property
    def cache_dir(self) -> Path:
        return self.base_dir / "cache"

    @property
    def audit_file(self) -> Path:
        return self.base_dir / "audit.jsonl"


def read_config_file(path: Path) -> dict[str, Any]:
    """
    Read the raw key/value mapping from a YAML config file.

    Returns:
        Dictionary of persisted settings (empty if the file is absent)

    Raises:
        InvalidConfigValueError: If the file is not a YAML mapping
    """
    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigValueError(str(path), None, f"unreadable YAML: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfigValueError(str(path), None, "config file must contain a mapping")

    logger.debug("config_file_read", path=str(path), keys=len(data))
    return data


class YamlFileSettingsSource(PydanticBaseSettingsSource):
    """
    A pydantic-settings source that loads the persisted config.yaml.

    The file to read is taken from the ``_config_file`` context variable
    set by ``PamConfig.from_file``; without one the source is empty.
    """

    def get_field_value(self, field_name: str, field_info: Any) -> tuple[Any, str, bool]:
        """Not used in this implementation."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        path = _config_file.get()
        if path is None:
            return {}
        return read_config_file(path)


class PamConfig(BaseSettings):
    """
    Process-wide configuration for the PAM CLI.

    Frozen: built once at startup and threaded into each component.
    """

    model_config = SettingsConfigDict(
        env_prefix="PAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    SECRET_FIELDS: ClassVar[frozenset[str]] = frozenset({"cli_api_key"})

    SETTABLE_KEYS: ClassVar[tuple[str, ...]] = (
        "user_email",
        "api_url",
        "cli_api_key",
        "gcs_bucket",
        "freshness_window_seconds",
        "request_timeout_seconds",
        "log_level",
        "log_file",
    )

    # Identity and endpoint
    user_email: Optional[str] = Field(default=None, description="Operator identity sent with each request")
    api_url: str = Field(default="http://localhost:8000", description="PAM backend base URL")
    cli_api_key: Optional[SecretStr] = Field(default=None, description="CLI API key (never logged)")

    # Context bundles
    gcs_bucket: str = Field(default="pam-context-files", description="Bucket holding context bundles")
    freshness_window_seconds: int = Field(
        default=3600, ge=0, description="Maximum bundle age before it is considered stale"
    )
    context_bundles: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CONTEXT_BUNDLES),
        description="Bundle name -> remote object name",
    )

    # Transport
    request_timeout_seconds: float = Field(default=60.0, gt=0, description="Backend request timeout")

    # Logging
    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional rotating JSON log file")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize the sources and their priority for loading configuration.

        Returns:
            Tuple of settings sources in priority order
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def from_file(cls, path: Optional[Path], **overrides: Any) -> "PamConfig":
        """Build a config with ``path`` as the persisted-file source."""
        token = _config_file.set(path)
        try:
            return cls(**overrides)
        finally:
            _config_file.reset(token)

    @field_validator("user_email")
    @classmethod
    def validate_user_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError(f"'{v}' is not an email address")
        return v

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"api_url must start with http:// or https://, got '{v}'")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @property
    def credential(self) -> Optional[str]:
        return self.cli_api_key.get_secret_value() if self.cli_api_key else None

    def object_name_for(self, bundle: str) -> str:
        """Remote object for a bundle; unknown names map to themselves."""
        return self.context_bundles.get(bundle, bundle)

    def to_file_dict(self) -> dict[str, Any]:
        """Plain mapping suitable for persisting, with secrets revealed."""
        data = self.model_dump(mode="json", exclude_none=True)
        if self.cli_api_key is not None:
            data["cli_api_key"] = self.cli_api_key.get_secret_value()
        return data


class ConfigStore:
    """
    Loads and persists the PAM CLI configuration.

    Example:
        store = ConfigStore()
        store.init({"user_email": "alice@example.com"})
        config = store.load()
    """

    def __init__(self, paths: Optional[PamPaths] = None):
        self.paths = paths or PamPaths.default()

    @property
    def path(self) -> Path:
        return self.paths.config_file

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, **overrides: Any) -> PamConfig:
        """
        Load the effective configuration.

        Raises:
            ConfigMissingError: If neither the config file nor the
                environment provides an identity
            InvalidConfigValueError: If any source holds an invalid value
        """
        config = self._build(self.path, overrides)

        if not self.exists() and config.user_email is None:
            raise ConfigMissingError(self.path)

        logger.debug(
            "config_loaded",
            path=str(self.path),
            api_url=config.api_url,
            user_email=config.user_email,
        )
        return config

    def init(self, defaults: Optional[dict[str, Any]] = None, force: bool = False) -> PamConfig:
        """
        Create the config file from built-in defaults plus ``defaults``.

        Raises:
            ConfigExistsError: If the file exists and ``force`` is False
        """
        if self.exists() and not force:
            raise ConfigExistsError(self.path)

        values = {k: v for k, v in (defaults or {}).items() if v is not None}
        for key in values:
            self._check_key(key)

        config = self._build(None, values)
        self._write(config.to_file_dict())

        logger.info("config_initialized", path=str(self.path))
        return self.load()

    def set(self, key: str, value: Any) -> None:
        """
        Persist a single setting.

        Raises:
            UnknownConfigKeyError: If ``key`` is not settable
            InvalidConfigValueError: If ``value`` fails validation
        """
        self._check_key(key)

        file_values = read_config_file(self.path)
        candidate = {**file_values, key: value}
        validated = self._build(None, candidate, focus=key)

        persisted = validated.to_file_dict()
        if key in persisted:
            file_values[key] = persisted[key]
        else:
            file_values.pop(key, None)
        self._write(file_values)

        logger.info("config_value_set", key=key)

    def show(self, config: PamConfig) -> dict[str, Any]:
        """Redacted view of ``config``; the credential is masked."""
        data = config.model_dump(mode="json")
        for field in PamConfig.SECRET_FIELDS:
            if data.get(field) is not None:
                data[field] = SECRET_MASK
        return data

    def _check_key(self, key: str) -> None:
        if key not in PamConfig.SETTABLE_KEYS:
            raise UnknownConfigKeyError(key, list(PamConfig.SETTABLE_KEYS))

    def _build(
        self,
        path: Optional[Path],
        values: dict[str, Any],
        focus: Optional[str] = None,
    ) -> PamConfig:
        try:
            return PamConfig.from_file(path, **values)
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error.get("loc") else (focus or "config")
            raise InvalidConfigValueError(
                field,
                values.get(field),
                error.get("msg", "invalid value"),
            ) from e

    def _write(self, data: dict[str, Any]) -> None:
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=True, indent=2)
        try:
            atomic_write_text(self.path, text)
        except OSError as e:
            raise StateWriteError(self.path, str(e)) from e
