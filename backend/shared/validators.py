"""Settings validation helpers shared by the service configurations."""

import json
from typing import Any

from pydantic.fields import FieldInfo
from pydantic_settings import EnvSettingsSource

_LIST_FIELDS = frozenset({"cors_origins"})


def parse_origin_list(value: str | list[str]) -> list[str]:
    """Accept a list, a JSON array string or a comma-separated string. Empty lists are allowed."""
    if isinstance(value, list):
        return value

    text = value.strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON array: {e}") from e
        if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
            raise ValueError("JSON value must be an array of strings")
        return parsed

    return [item.strip() for item in text.split(",") if item.strip()]


class ListEnvSettingsSource(EnvSettingsSource):
    """Hands list-typed env values to field validators as raw strings.

    pydantic-settings would otherwise JSON-decode them first and reject the
    comma-separated form.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in _LIST_FIELDS and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
