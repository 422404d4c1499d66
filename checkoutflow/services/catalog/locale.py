"""Locale resolution for gateway-facing product copy."""

from collections.abc import Mapping
from typing import Any

DEFAULT_LOCALE = "en"

COUNTRY_HEADERS = (
    "x-vercel-ip-country",
    "cf-ipcountry",
    "x-country",
    "x-geo-country",
    "fastly-client-country",
    "x-appengine-country",
)


def normalize_locale(tag: Any) -> str | None:
    """Map a language tag (`uk-UA`, `en-US`, `ua`) to a supported locale."""

    if not isinstance(tag, str):
        return None
    primary = tag.strip().lower().replace("_", "-").split("-")[0]
    if primary in ("ua", "uk"):
        return "ua"
    if primary == "en":
        return "en"
    return None


def _country(headers: Mapping[str, str]) -> str | None:
    for name in COUNTRY_HEADERS:
        value = headers.get(name)
        if value and value.strip():
            return value.strip().upper()
    return None


def _from_accept_language(raw: str | None) -> str | None:
    if not raw:
        return None
    for part in raw.split(","):
        locale = normalize_locale(part.strip().split(";")[0])
        if locale:
            return locale
    return None


def resolve_locale(query: Mapping[str, str], headers: Mapping[str, str]) -> str:
    """Explicit query override, then geo country, then Accept-Language."""

    for key in ("lang", "locale", "language"):
        override = normalize_locale(query.get(key))
        if override:
            return override

    if _country(headers) == "UA":
        return "ua"

    return _from_accept_language(headers.get("accept-language")) or DEFAULT_LOCALE
