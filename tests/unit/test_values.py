"""
Tests for tagged JSON values.
"""

import pytest

from pam_cli.models.enums import ParamType
from pam_cli.models.values import JsonTag, JsonValue, UnsupportedValueError


class TestJsonValue:
    """Tests for tagging and type matching."""

    @pytest.mark.parametrize(
        "raw,tag",
        [
            ("text", JsonTag.STRING),
            (3, JsonTag.INTEGER),
            (2.5, JsonTag.NUMBER),
            (False, JsonTag.BOOLEAN),
            ([1, "a"], JsonTag.ARRAY),
            ({"k": 1}, JsonTag.OBJECT),
        ],
    )
    def test_tags(self, raw, tag):
        assert JsonValue.of(raw).tag is tag

    def test_bool_tagged_before_int(self):
        """Test True is a boolean, not an integer."""
        value = JsonValue.of(True)
        assert value.tag is JsonTag.BOOLEAN
        assert not value.matches(ParamType.INTEGER)

    def test_rejects_none(self):
        with pytest.raises(UnsupportedValueError):
            JsonValue.of(None)

    def test_rejects_non_json_types(self):
        """Test values outside the JSON model are rejected with their path."""
        with pytest.raises(UnsupportedValueError) as exc_info:
            JsonValue.of({"when": {"at": object()}})

        assert exc_info.value.path == "when.at"

    def test_round_trip_nested(self):
        raw = {"a": [1, {"b": True}], "c": "x"}
        assert JsonValue.of(raw).to_python() == raw

    def test_matches(self):
        """Test ANY accepts everything and NUMBER accepts integers."""
        assert JsonValue.of([1]).matches(ParamType.ANY)
        assert JsonValue.of(1).matches(ParamType.NUMBER)
        assert not JsonValue.of(1.5).matches(ParamType.INTEGER)
        assert JsonValue.of("s").matches(ParamType.STRING)
