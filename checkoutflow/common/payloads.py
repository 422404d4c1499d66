"""Normalize gateway request bodies into one string-keyed mapping.

The gateway posts JSON, form-encoded fields, or a JSON document sent with a
form content type. All three end up as `{name: str | list[str]}` before any
business logic looks at them.
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import parse_qsl

from checkoutflow.common.errors import BadRequest
from checkoutflow.common.signature import field_text

Fields = dict[str, str | list[str]]


def parse_body(body: bytes, content_type: str = "") -> dict[str, Any]:
    """Decode a request body into a raw mapping (JSON object or form fields)."""

    try:
        text = body.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise BadRequest("body is not valid UTF-8", code="bad_request") from exc
    if not text:
        return {}

    if text.startswith("{") or "json" in content_type.lower():
        try:
            decoded = json.loads(text)
        except ValueError as exc:
            raise BadRequest("body is not valid JSON", code="bad_request", details=str(exc)) from exc
        if not isinstance(decoded, dict):
            raise BadRequest("JSON body must be an object", code="bad_request")
        return decoded

    pairs = parse_qsl(text, keep_blank_values=True)
    # A JSON document posted as the only form key, with no value.
    if len(pairs) == 1 and not pairs[0][1] and pairs[0][0].lstrip().startswith("{"):
        return parse_body(pairs[0][0].encode("utf-8"), "application/json")

    form: dict[str, Any] = {}
    for key, value in pairs:
        if key.endswith("[]"):
            key = key[:-2]
        if key in form:
            existing = form[key]
            form[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            form[key] = value
    return form


def _normalize_value(value: Any) -> str | list[str]:
    if isinstance(value, (list, tuple)):
        return [field_text(item) if not isinstance(item, (dict, list)) else json.dumps(item) for item in value]
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return field_text(value)


def normalize_fields(raw: Mapping[str, Any]) -> Fields:
    """Convert a decoded body into string (or list-of-string) values."""

    return {str(key): _normalize_value(value) for key, value in raw.items()}


def pick(fields: Mapping[str, Any], keys: Iterable[str]) -> str | None:
    """First non-blank value among `keys`, trimmed; lists yield their first item."""

    for key in keys:
        value = fields.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
