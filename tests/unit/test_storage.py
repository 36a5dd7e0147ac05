"""
Tests for atomic state writes.
"""

import json

import pytest

from pam_cli.core.storage import atomic_write_json, atomic_write_text, read_json, safe_filename


class TestAtomicWrite:
    """Tests for write-temp-then-rename persistence."""

    def test_creates_parent_dirs(self, temp_dir):
        path = temp_dir / "a" / "b" / "state.json"

        atomic_write_json(path, {"k": 1})

        assert read_json(path) == {"k": 1}

    def test_replace_failure_leaves_original(self, temp_dir, mocker):
        """Test a failed rename keeps the old file and removes the temp file."""
        path = temp_dir / "state.json"
        path.write_text(json.dumps({"version": 1}))
        mocker.patch("pam_cli.core.storage.os.replace", side_effect=OSError("cross-device"))

        with pytest.raises(OSError):
            atomic_write_text(path, json.dumps({"version": 2}))

        assert json.loads(path.read_text()) == {"version": 1}
        assert [p.name for p in temp_dir.iterdir()] == ["state.json"]


class TestSafeFilename:
    def test_strips_path_components(self):
        assert safe_filename("../../etc/passwd") == "etcpasswd"

    def test_keeps_session_ids(self):
        assert safe_filename("cos_20240603_090507_abcdef12") == "cos_20240603_090507_abcdef12"
