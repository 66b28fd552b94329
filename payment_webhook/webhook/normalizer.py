"""Payload normalizer: turns any supported request shape into a Notification.

Supported shapes: JSON (default), ``text/plain`` carrying JSON or the literal
``hi``, and ``application/x-www-form-urlencoded``. Each content-type strategy
only parses; the ``hi`` echo check and the phone validation run once on the
parsed result.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl

from payment_webhook.webhook.models import Notification

logger = logging.getLogger(__name__)

INVALID_JSON = "INVALID_JSON"
MISSING_PHONE_NUMBER = "MISSING_PHONE_NUMBER"
INVALID_PHONE_FORMAT = "INVALID_PHONE_FORMAT"

_MESSAGES = {
    INVALID_JSON: "Invalid JSON in request body",
    MISSING_PHONE_NUMBER: "Phone number is required and must be a string",
    INVALID_PHONE_FORMAT: "Invalid phone number format",
}

_ECHO_FIELDS = ("message", "msg", "text", "body")
_PHONE_PATTERN = re.compile(r"[\d\s\-+()]{10,}")
_PHONE_SEPARATORS = re.compile(r"[\s\-()]")

_FORM_FIELDS = (
    "phone_number",
    "phoneNumber",
    "transactionId",
    "status",
    "email",
    "full_name",
    "due_date",
    "account_id",
    "templateID",
    "templateId",
    "template_id",
    "template_name",
    "merchant_reference_number",
    "pref_lang_code",
    "message",
    "msg",
)
_FORM_NUMERIC_FIELDS = ("amount", "dueAmount")


class PayloadRejectedError(Exception):
    """Raised when a request body cannot be turned into a notification."""

    def __init__(self, error: str, status_code: int = 400) -> None:
        self.error = error
        self.message = _MESSAGES.get(error, error)
        self.status_code = status_code
        super().__init__(f"{error}: {self.message}")


def is_hi(value: object) -> bool:
    return isinstance(value, str) and value.strip().lower() == "hi"


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-standard JSON token {token}")


def _loads(text: str) -> Any:
    """json.loads that refuses NaN, Infinity and -Infinity."""
    return json.loads(text, parse_constant=_reject_constant)


def _parse_json(raw: bytes) -> Any:
    try:
        payload = _loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        logger.error("Failed to parse JSON body: %s", exc)
        raise PayloadRejectedError(INVALID_JSON) from exc
    # null, false, 0 and "" carry nothing to process; empty containers still do
    if not isinstance(payload, (dict, list)) and not payload:
        raise PayloadRejectedError(INVALID_JSON)
    return payload


def _parse_text(raw: bytes) -> Any:
    text = raw.decode("utf-8", errors="replace")
    if is_hi(text):
        return text
    try:
        return _loads(text)
    except ValueError as exc:
        logger.error("text/plain body is neither 'hi' nor JSON: %s", exc)
        raise PayloadRejectedError(INVALID_JSON) from exc


def _to_number(value: str) -> float | int | None:
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _parse_form(raw: bytes) -> dict[str, Any]:
    params = dict(parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True))
    payload: dict[str, Any] = {k: params[k] for k in _FORM_FIELDS if k in params}
    for key in _FORM_NUMERIC_FIELDS:
        if key in params:
            payload[key] = _to_number(params[key])
    if "send_notification" in params:
        payload["send_notification"] = params["send_notification"].strip().lower() != "false"
    return payload


def _select_parser(content_type: str) -> Callable[[bytes], Any]:
    ct = content_type.lower()
    if "text/plain" in ct:
        return _parse_text
    if "application/x-www-form-urlencoded" in ct:
        return _parse_form
    return _parse_json


def parse_body(content_type: str, raw: bytes) -> Any:
    """Parse a request body according to its content type."""
    return _select_parser(content_type)(raw)


def wants_echo(payload: Any) -> bool:
    """True when the payload is the 'hi' test message in any recognized shape."""
    if isinstance(payload, str):
        return is_hi(payload)
    if isinstance(payload, dict):
        return any(is_hi(payload.get(name)) for name in _ECHO_FIELDS)
    return False


def _phone_to_str(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return str(int(value)) if value.is_integer() else str(value)
    return None


def normalize_phone_number(phone_number: str) -> str:
    """Strip separators and collapse a leading ``00`` international prefix to ``+``."""
    compact = _PHONE_SEPARATORS.sub("", phone_number)
    if compact.startswith("00"):
        compact = "+" + compact[2:]
    return compact


def extract_phone_number(payload: dict[str, Any]) -> str:
    raw = payload.get("phone_number")
    if raw is None:
        raw = payload.get("phoneNumber")
    phone_number = _phone_to_str(raw)
    if phone_number is None:
        logger.warning("Missing or invalid phone_number")
        raise PayloadRejectedError(MISSING_PHONE_NUMBER)
    if not _PHONE_PATTERN.fullmatch(phone_number):
        logger.warning("Invalid phone number format: %s", phone_number)
        raise PayloadRejectedError(INVALID_PHONE_FORMAT)
    return normalize_phone_number(phone_number)


def normalize_request(content_type: str, raw: bytes) -> Notification | None:
    """Run the full normalizer.

    Returns None when the request is the 'hi' test message, a Notification
    otherwise. Raises PayloadRejectedError for unusable bodies.
    """
    payload = parse_body(content_type, raw)
    if wants_echo(payload):
        logger.info("Echo test message received")
        return None
    if not isinstance(payload, dict):
        raise PayloadRejectedError(INVALID_JSON)

    logger.info(
        "Request payload: phone=%s amount=%s transactionId=%s status=%s",
        payload.get("phone_number", payload.get("phoneNumber")),
        payload.get("dueAmount", payload.get("amount")),
        payload.get("transactionId"),
        payload.get("status"),
    )
    phone_number = extract_phone_number(payload)
    return Notification(phone_number=phone_number, payload=payload)
