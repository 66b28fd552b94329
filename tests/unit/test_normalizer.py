"""Tests for the payload normalizer."""

from __future__ import annotations

import json

import pytest

from payment_webhook.webhook.normalizer import (
    INVALID_JSON,
    INVALID_PHONE_FORMAT,
    MISSING_PHONE_NUMBER,
    PayloadRejectedError,
    extract_phone_number,
    normalize_phone_number,
    normalize_request,
    parse_body,
    wants_echo,
)

JSON = "application/json"
TEXT = "text/plain"
FORM = "application/x-www-form-urlencoded"


def _json(payload: object) -> bytes:
    return json.dumps(payload).encode()


class TestParseBody:
    def test_json_object(self) -> None:
        assert parse_body(JSON, _json({"a": 1})) == {"a": 1}

    def test_unknown_content_type_falls_back_to_json(self) -> None:
        assert parse_body("application/vnd.custom", _json({"a": 1})) == {"a": 1}

    def test_content_type_match_is_case_insensitive(self) -> None:
        assert parse_body("Text/Plain; charset=UTF-8", b"hi") == "hi"

    @pytest.mark.parametrize("raw", [b"invalid json", b"", b"null", b"false", b"0", b'""'])
    def test_unusable_json_rejected(self, raw: bytes) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            parse_body(JSON, raw)
        assert exc_info.value.error == INVALID_JSON
        assert exc_info.value.status_code == 400

    def test_empty_object_is_not_rejected_as_json(self) -> None:
        assert parse_body(JSON, b"{}") == {}

    def test_text_plain_hi_kept_verbatim(self) -> None:
        assert parse_body(TEXT, b"  Hi \n") == "  Hi \n"

    def test_text_plain_json(self) -> None:
        assert parse_body(TEXT, b'{"phoneNumber":"+15550002222"}') == {
            "phoneNumber": "+15550002222",
        }

    def test_text_plain_garbage_rejected(self) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            parse_body(TEXT, b"not-json")
        assert exc_info.value.error == INVALID_JSON

    def test_missing_content_type_is_read_as_json(self) -> None:
        assert parse_body("", b'{"a": 1}') == {"a": 1}
        with pytest.raises(PayloadRejectedError) as exc_info:
            parse_body("", b"hi")
        assert exc_info.value.error == INVALID_JSON

    @pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
    @pytest.mark.parametrize("content_type", [JSON, TEXT])
    def test_non_standard_number_tokens_rejected(self, token: str, content_type: str) -> None:
        raw = f'{{"phone_number": "9953969666", "amount": {token}}}'.encode()
        with pytest.raises(PayloadRejectedError) as exc_info:
            parse_body(content_type, raw)
        assert exc_info.value.error == INVALID_JSON

    def test_bare_nan_rejected(self) -> None:
        with pytest.raises(PayloadRejectedError):
            parse_body(JSON, b"NaN")

    def test_form_named_fields_and_numeric_coercion(self) -> None:
        raw = b"phone_number=%2B919876543210&amount=100&transactionId=txn_456&ignored=x"
        assert parse_body(FORM, raw) == {
            "phone_number": "+919876543210",
            "amount": 100,
            "transactionId": "txn_456",
        }

    def test_form_non_numeric_amount_becomes_none(self) -> None:
        assert parse_body(FORM, b"amount=abc")["amount"] is None

    def test_form_send_notification_false(self) -> None:
        assert parse_body(FORM, b"send_notification=false")["send_notification"] is False


class TestEcho:
    @pytest.mark.parametrize("payload", ["hi", " HI ", {"message": "hi"}, {"msg": "Hi"},
                                         {"text": "hi"}, {"body": " hI"}])
    def test_hi_variants_echo(self, payload: object) -> None:
        assert wants_echo(payload) is True

    @pytest.mark.parametrize("payload", ["hello", {"message": "hello"}, {"message": 1},
                                         {"greeting": "hi"}, ["hi"]])
    def test_non_hi_does_not_echo(self, payload: object) -> None:
        assert wants_echo(payload) is False

    def test_echo_wins_over_valid_fields(self) -> None:
        raw = _json({"message": "hi", "phone_number": "+919876543210"})
        assert normalize_request(JSON, raw) is None

    def test_form_message_hi(self) -> None:
        assert normalize_request(FORM, b"msg=Hi") is None


class TestPhoneNumber:
    def test_snake_case_preferred(self) -> None:
        assert extract_phone_number(
            {"phone_number": "9953969666", "phoneNumber": "1111111111"},
        ) == "9953969666"

    def test_camel_case_used_when_snake_absent(self) -> None:
        assert extract_phone_number({"phoneNumber": "9876543210"}) == "9876543210"

    def test_numeric_phone_coerced(self) -> None:
        assert extract_phone_number({"phone_number": 9953969666}) == "9953969666"

    @pytest.mark.parametrize("payload", [{}, {"phone_number": None}, {"phone_number": ""},
                                         {"phone_number": True}, {"phone_number": ["1"]}])
    def test_missing_phone(self, payload: dict) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            extract_phone_number(payload)
        assert exc_info.value.error == MISSING_PHONE_NUMBER
        assert "Phone number is required" in exc_info.value.message

    @pytest.mark.parametrize("phone", ["invalid", "12345", "123456789", "99539x69666"])
    def test_invalid_format(self, phone: str) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            extract_phone_number({"phone_number": phone})
        assert exc_info.value.error == INVALID_PHONE_FORMAT

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("+919876543210", "+919876543210"),
            ("+1 (555) 000-1111", "+15550001111"),
            ("(91) 98765-43210", "919876543210"),
            ("+91-9953 969 666", "+919953969666"),
            ("00919876543210", "+919876543210"),
            ("00 91 98765 43210", "+919876543210"),
            ("9953969666", "9953969666"),
        ],
    )
    def test_normalization(self, raw: str, expected: str) -> None:
        assert extract_phone_number({"phone_number": raw}) == expected

    def test_single_leading_zero_kept(self) -> None:
        assert normalize_phone_number("09953969666") == "09953969666"


class TestNormalizeRequest:
    def test_returns_notification_with_payload(self) -> None:
        payload = {"phone_number": "9953969666", "dueAmount": 3000, "transactionId": "t1"}
        notification = normalize_request(JSON, _json(payload))
        assert notification is not None
        assert notification.phone_number == "9953969666"
        assert notification.payload == payload
        assert notification.transaction_id == "t1"

    def test_json_string_other_than_hi_rejected(self) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            normalize_request(JSON, b'"hello"')
        assert exc_info.value.error == INVALID_JSON

    def test_json_array_rejected(self) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            normalize_request(JSON, b'[{"phone_number": "9953969666"}]')
        assert exc_info.value.error == INVALID_JSON

    def test_empty_object_missing_phone(self) -> None:
        with pytest.raises(PayloadRejectedError) as exc_info:
            normalize_request(JSON, b"{}")
        assert exc_info.value.error == MISSING_PHONE_NUMBER
