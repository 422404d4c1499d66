"""Request body decoding for JSON, form and JSON-in-form gateway posts."""

import json
from urllib.parse import urlencode

import pytest

from checkoutflow.common.errors import BadRequest
from checkoutflow.common.payloads import normalize_fields, parse_body, pick


def test_json_body():
    assert parse_body(b'{"orderReference": "r1", "amount": 1}', "application/json") == {
        "orderReference": "r1",
        "amount": 1,
    }


def test_json_document_with_form_content_type():
    body = json.dumps({"orderReference": "r1"}).encode()
    assert parse_body(body, "application/x-www-form-urlencoded") == {"orderReference": "r1"}


def test_json_document_as_only_form_key():
    body = urlencode({json.dumps({"orderReference": "r1", "amount": 2}): ""}).encode()
    assert parse_body(body, "application/x-www-form-urlencoded") == {"orderReference": "r1", "amount": 2}


def test_form_body_collects_lists():
    body = b"orderReference=r1&productName[]=a&productName[]=b"
    assert parse_body(body, "application/x-www-form-urlencoded") == {
        "orderReference": "r1",
        "productName": ["a", "b"],
    }


def test_bad_bodies():
    with pytest.raises(BadRequest):
        parse_body(b"{not json", "application/json")
    with pytest.raises(BadRequest):
        parse_body(b"[1, 2]", "application/json")
    with pytest.raises(BadRequest):
        parse_body(b"\xff\xfe", "")
    assert parse_body(b"", "application/json") == {}


def test_normalize_and_pick():
    fields = normalize_fields({"amount": 1.0, "flag": True, "names": ["a", 2], "blank": "  "})
    assert fields == {"amount": "1", "flag": "true", "names": ["a", "2"], "blank": "  "}
    assert pick(fields, ["blank", "amount"]) == "1"
    assert pick(fields, ["names"]) == "a"
    assert pick(fields, ["missing"]) is None
