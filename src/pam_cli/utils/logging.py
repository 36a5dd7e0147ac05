"""
Structured logging for the PAM CLI.

structlog renders human-readable events to stderr so they never mix with
command output on stdout; an optional rotating file receives the same
events as JSON lines. Credential-like keys are masked before rendering.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from ..core.config import PamConfig

REDACTED_KEYS = frozenset(
    {"cli_api_key", "credential", "api_key", "authorization", "x-pam-cli-key"}
)


def setup_file_logging(
    log_file: Path, max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5  # 10MB
) -> RotatingFileHandler:
    """
    Configure rotating file handler for logs.

    Args:
        log_file: Path to the log file
        max_bytes: Maximum log file size before rotation (default: 10MB)
        backup_count: Number of backup files to keep (default: 5)

    Returns:
        Configured RotatingFileHandler instance
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    return file_handler


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor that masks credential-like values."""
    for key in list(event_dict):
        if key.lower() in REDACTED_KEYS and event_dict[key] is not None:
            event_dict[key] = "********"
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            k: ("********" if k.lower() in REDACTED_KEYS else v) for k, v in headers.items()
        }
    return event_dict


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # sys.stderr is looked up on every call
    return structlog.PrintLogger(sys.stderr)


def setup_logging(config: "PamConfig | None" = None, verbose: bool = False) -> None:
    """
    Configure structured logging with appropriate processors.

    Args:
        config: Loaded configuration (log level and optional log file);
            defaults apply when no configuration is available yet
        verbose: Lower the console threshold to DEBUG
    """
    level_name = "DEBUG" if verbose else (config.log_level.value if config else "WARNING")
    level = getattr(logging, level_name, logging.WARNING)
    log_file = config.log_file if config else None

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_file is not None:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.dev.ConsoleRenderer(),
                ],
            )
        )
        console_handler.setLevel(level)

        file_handler = setup_file_logging(log_file)
        file_handler.setLevel(logging.DEBUG)

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)
        root_logger.setLevel(logging.DEBUG)

        # The file always gets INFO and above; the console filters by level
        logger_factory = structlog.stdlib.LoggerFactory()
        wrapper_level = min(level, logging.INFO)
        processors = shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
    else:
        logger_factory = _stderr_logger  # type: ignore[assignment]
        wrapper_level = level
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(wrapper_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
