"""HMAC-MD5 signatures for the WayForPay request and callback protocol.

Field order and the `;` separator are part of the wire contract: the gateway
recomputes the same string and compares digests byte for byte.
"""

import hashlib
import hmac
from collections.abc import Iterable, Iterator, Mapping
from decimal import Decimal
from typing import Any

SEPARATOR = ";"
ACCEPT = "accept"

INVOICE_FIELDS = (
    "merchantAccount",
    "merchantDomainName",
    "orderReference",
    "orderDate",
    "amount",
    "currency",
    "productName",
    "productCount",
    "productPrice",
)
WEBHOOK_FIELDS = (
    "merchantAccount",
    "orderReference",
    "amount",
    "currency",
    "authCode",
    "cardPan",
    "transactionStatus",
    "reasonCode",
)


def field_text(value: Any) -> str:
    """Render one scalar the way the gateway does before signing."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


def _flatten(fields: Iterable[Any]) -> Iterator[str]:
    for value in fields:
        if isinstance(value, (list, tuple)):
            for item in value:
                yield field_text(item)
        else:
            yield field_text(value)


def signature_string(ordered_fields: Iterable[Any]) -> str:
    """Join fields with `;`, flattening list values in positional order."""

    return SEPARATOR.join(_flatten(ordered_fields))


def sign(secret: str, ordered_fields: Iterable[Any]) -> str:
    """Hex HMAC-MD5 of the canonical field string."""

    message = signature_string(ordered_fields)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.md5).hexdigest()


def ordered_values(payload: Mapping[str, Any], names: Iterable[str]) -> list[Any]:
    return [payload.get(name) for name in names]


def invoice_signature(secret: str, request: Mapping[str, Any]) -> str:
    return sign(secret, ordered_values(request, INVOICE_FIELDS))


def verify_inbound(secret: str, payload: Mapping[str, Any]) -> bool:
    """Recompute the callback signature and compare with `merchantSignature`."""

    declared = payload.get("merchantSignature")
    if not isinstance(declared, str) or not declared.strip():
        return False
    expected = sign(secret, ordered_values(payload, WEBHOOK_FIELDS))
    return hmac.compare_digest(expected, declared.strip().lower())


def sign_acknowledgement(secret: str, order_ref: str, time: int) -> str:
    return sign(secret, [order_ref, ACCEPT, time])
