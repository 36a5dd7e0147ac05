"""Tagged JSON values for skill parameters.

Skill parameters arrive as arbitrary JSON. Before validation each value is
converted into a ``JsonValue`` carrying an explicit ``JsonTag`` so the
schema validator can match on the tag instead of probing Python types.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .enums import ParamType


class JsonTag(str, Enum):
    """Recognized value tags."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"

    def __str__(self) -> str:
        return self.value


class UnsupportedValueError(TypeError):
    """Raised for values outside the recognized tag set."""

    def __init__(self, value: Any, path: str = ""):
        super().__init__(f"unsupported value type {type(value).__name__!s} at '{path}'")
        self.value = value
        self.path = path


@dataclass(frozen=True)
class JsonValue:
    """A JSON value paired with its tag."""

    tag: JsonTag
    value: Any

    @classmethod
    def of(cls, raw: Any, path: str = "") -> "JsonValue":
        """
        Tag a Python value decoded from JSON.

        Nested arrays and objects are checked recursively.

        Raises:
            UnsupportedValueError: If the value (or a nested value) is null
                or not a JSON type
        """
        # bool is a subclass of int, so it must be matched first
        if isinstance(raw, bool):
            return cls(JsonTag.BOOLEAN, raw)
        if isinstance(raw, int):
            return cls(JsonTag.INTEGER, raw)
        if isinstance(raw, float):
            return cls(JsonTag.NUMBER, raw)
        if isinstance(raw, str):
            return cls(JsonTag.STRING, raw)
        if isinstance(raw, (list, tuple)):
            items = [cls.of(item, f"{path}[{i}]") for i, item in enumerate(raw)]
            return cls(JsonTag.ARRAY, items)
        if isinstance(raw, dict):
            fields = {}
            for key, item in raw.items():
                if not isinstance(key, str):
                    raise UnsupportedValueError(key, path)
                fields[key] = cls.of(item, f"{path}.{key}" if path else key)
            return cls(JsonTag.OBJECT, fields)
        raise UnsupportedValueError(raw, path)

    def to_python(self) -> Any:
        """Convert back to plain Python/JSON data."""
        if self.tag is JsonTag.ARRAY:
            return [item.to_python() for item in self.value]
        if self.tag is JsonTag.OBJECT:
            return {key: item.to_python() for key, item in self.value.items()}
        return self.value

    def matches(self, expected: ParamType) -> bool:
        """Check whether this value satisfies a declared parameter type."""
        if expected is ParamType.ANY:
            return True
        if expected is ParamType.NUMBER:
            return self.tag in (JsonTag.INTEGER, JsonTag.NUMBER)
        return self.tag.value == expected.value
