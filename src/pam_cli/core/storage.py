"""
Atomic file persistence for local state.

Every on-disk mutation (config, sessions, cached bundles, audit log) goes
through ``atomic_write_text``: the payload is written to a unique
temporary file in the target directory, flushed, and moved into place
with ``os.replace``. A reader in another process sees either the old file
or the new one, never a partial write.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from ..utils.logging import get_logger

logger = get_logger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """
    Atomically replace ``path`` with ``text``.

    Raises:
        OSError: If the write fails; the previous file is left untouched
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.debug("state_written", path=str(path), bytes=len(text))


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialize ``data`` as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, default=str))


def read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def safe_filename(name: str) -> str:
    """Strip a key down to characters safe for a file name."""
    # Prevents directory traversal through session ids or bundle names
    return "".join(c for c in name if c.isalnum() or c in "-_.").lstrip(".")
