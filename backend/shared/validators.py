"""Shared validation helpers for service settings."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def _parse_json_array(raw: str) -> list[str]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON array: {e}") from e
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ValueError("JSON value must be an array of strings")
    return [item.strip() for item in parsed]


def parse_string_list(value: str | list[str] | tuple[str, ...], *, allow_empty: bool = False) -> list[str]:
    """Parse a string list from an environment variable or config value.

    Accepts a list or tuple of strings, a JSON array string ('["a","b"]')
    or a comma-separated string ('a, b'). Blank CSV segments are skipped.

    Raises ValueError for blank strings, malformed JSON, and (unless
    allow_empty is set) lists that end up empty.
    """
    if isinstance(value, (list, tuple)):
        result = list(value)
    else:
        stripped = value.strip()
        if not stripped:
            raise ValueError("String list value must not be empty")
        if stripped.startswith("["):
            result = _parse_json_array(stripped)
        else:
            result = [segment.strip() for segment in stripped.split(",") if segment.strip()]

    if not allow_empty and not result:
        raise ValueError("String list value must not be empty")
    return result


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env settings source that hands string-list fields to validators untouched.

    pydantic-settings JSON-decodes list-typed env values before validators
    run, which rejects the CSV form. Fields named in string_list_fields are
    passed through as raw strings so parse_string_list can accept both.
    """

    string_list_fields: ClassVar[frozenset[str]] = frozenset({"cors_origins", "difficulties"})

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in self.string_list_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
