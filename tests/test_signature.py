"""Signature engine: canonical strings, invoice signing, callback verification."""

import hashlib
import hmac
from decimal import Decimal

from checkoutflow.common.signature import (
    field_text,
    invoice_signature,
    sign,
    sign_acknowledgement,
    signature_string,
    verify_inbound,
)


def _md5(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.md5).hexdigest()


def test_field_text_renders_like_the_gateway():
    assert field_text(None) == ""
    assert field_text(True) == "true"
    assert field_text(1.0) == "1"
    assert field_text(1.5) == "1.5"
    assert field_text(Decimal("2.00")) == "2"
    assert field_text(Decimal("100")) == "100"
    assert field_text(1100) == "1100"


def test_lists_flatten_in_place():
    assert signature_string(["a", ["x", "y"], 3, [1, 1]]) == "a;x;y;3;1;1"


def test_sign_is_hmac_md5_over_joined_fields():
    assert sign("secret", ["merchant", "ref_1", 1, "UAH"]) == _md5("secret", "merchant;ref_1;1;UAH")


def test_invoice_signature_field_order():
    request = {
        "merchantAccount": "m",
        "merchantDomainName": "d.example",
        "orderReference": "short_20260101_0a1b2c3d",
        "orderDate": 1767225600,
        "amount": 1,
        "currency": "UAH",
        "productName": ["Short Reboot"],
        "productCount": [1],
        "productPrice": [1],
        "language": "EN",
    }
    expected = _md5("k", "m;d.example;short_20260101_0a1b2c3d;1767225600;1;UAH;Short Reboot;1;1")
    assert invoice_signature("k", request) == expected


def test_verify_inbound_accepts_valid_and_rejects_tampered(make_webhook):
    payload = make_webhook("short_20260101_0a1b2c3d")
    assert verify_inbound("test-secret", payload)

    tampered = dict(payload, amount=100)
    assert not verify_inbound("test-secret", tampered)
    assert not verify_inbound("other-secret", payload)


def test_verify_inbound_requires_signature(make_webhook):
    payload = make_webhook("short_20260101_0a1b2c3d")
    payload.pop("merchantSignature")
    assert not verify_inbound("test-secret", payload)
    assert not verify_inbound("test-secret", dict(payload, merchantSignature="  "))


def test_verify_inbound_ignores_signature_case(make_webhook):
    payload = make_webhook("short_20260101_0a1b2c3d")
    payload["merchantSignature"] = payload["merchantSignature"].upper()
    assert verify_inbound("test-secret", payload)


def test_acknowledgement_signature():
    assert sign_acknowledgement("k", "irem_20260101_deadbeef", 1767225600) == _md5(
        "k", "irem_20260101_deadbeef;accept;1767225600"
    )
