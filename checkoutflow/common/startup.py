"""Startup-time config snapshot with secrets redacted."""

from typing import Any

from checkoutflow.common.config import GATEWAY_ENV_KEYS, CommonSettings, settings
from checkoutflow.common.logging import logger

SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")


def redact(name: str, value: Any) -> Any:
    """Hide secret-like values; distinguish empty from set."""

    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>" if str(value).strip() else "<empty>"
    return value


def startup_snapshot(service_name: str, keys: list[str], source: CommonSettings = settings) -> dict[str, Any]:
    """Effective values (env and `.env`) for `keys`, plus absent gateway keys."""

    snapshot: dict[str, Any] = {"service": service_name}
    for key in keys:
        snapshot[key] = redact(key, getattr(source, key.lower(), None))
    snapshot["gateway_missing"] = [
        env for env, attr in GATEWAY_ENV_KEYS.items() if not str(getattr(source, attr, "")).strip()
    ]
    return snapshot


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    snapshot = startup_snapshot(service_name, keys)
    if snapshot["gateway_missing"]:
        logger.error("startup_config=%s", snapshot)
    else:
        logger.info("startup_config=%s", snapshot)
