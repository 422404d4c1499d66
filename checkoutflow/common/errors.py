"""Error taxonomy shared by the checkout services.

Every error carries the HTTP status and machine-readable code the web layer
renders as `{"ok": false, "error": code, ...details}`.
"""

from typing import Any


class CheckoutError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", code: str | None = None, **details: Any) -> None:
        super().__init__(message or code or self.code)
        if code is not None:
            self.code = code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error": self.code}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class BadRequest(CheckoutError):
    status_code = 400
    code = "bad_request"


class NotFound(CheckoutError):
    status_code = 404
    code = "not_found"


class Conflict(CheckoutError):
    status_code = 409
    code = "conflict"


class Gone(CheckoutError):
    status_code = 410
    code = "gone"


class RateLimited(CheckoutError):
    status_code = 429
    code = "rate_limited"


class ConfigMissing(CheckoutError):
    """Required secret or URL is not configured."""

    status_code = 500
    code = "missing_env"


class SignatureMismatch(CheckoutError):
    status_code = 401
    code = "bad_signature"


class GatewayUnreachable(CheckoutError):
    """Transport failure or timeout talking to the gateway."""

    status_code = 502
    code = "wfp_unreachable"


class GatewayNoUrl(CheckoutError):
    """Gateway answered without a usable invoice URL."""

    status_code = 502
    code = "wfp_no_url"


class DbWriteFailed(CheckoutError):
    status_code = 500
    code = "db_write_failed"

    def __init__(self, table: str, message: str = "", **details: Any) -> None:
        super().__init__(message or f"write to {table} failed", table=table, **details)
        self.table = table
