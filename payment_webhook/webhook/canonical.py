"""Canonical request body sent to the upstream partner API.

Builds the defaulted field set the partner expects from a loosely shaped
notification payload, and lists the fields covered by the integrity hash in
the partner's fixed order.
"""

from __future__ import annotations

import math
import re
from datetime import UTC, date, datetime, timedelta
from typing import Any

DEFAULT_EMAIL = "test_1@pelocal.com"
DEFAULT_FULL_NAME = "Voice AI Customer"
DEFAULT_ACCOUNT_ID = "321143"
DEFAULT_AMOUNT = 1
DEFAULT_TEMPLATE = "pl_pmt_od_template"
DEFAULT_LANG_CODE = "en"
DUE_DATE_OFFSET_DAYS = 3

# template selector -> (template_name, forced pref_lang_code)
TEMPLATES: dict[str, tuple[str, str | None]] = {
    "pl_pmt_od_template": ("pl_pmt_od_template", None),
    "pl_payment_link_ml": ("pl_payment_link_ml", "ml"),
}
_TEMPLATE_SELECTORS = ("templateID", "templateId", "template_id", "template_name")

CUSTOM_FIELDS = tuple(f"custom_field{i}" for i in range(1, 9))
_ENABLED_STRINGS = {"1", "y", "yes", "true"}

_ISO_DATE = re.compile(r"(\d{4}-\d{2}-\d{2})(T.*)?")

_HASH_BASE_FIELDS = (
    "phone_number",
    "email",
    "full_name",
    "amount",
    "due_date",
    "account_id",
    "send_notification",
    "template_name",
    "merchant_reference_number",
    "pref_lang_code",
)


def resolve_amount(payload: dict[str, Any]) -> int | float:
    """Pick dueAmount over amount and coerce it to a number, defaulting to 1."""
    raw = payload.get("dueAmount")
    if raw is None:
        raw = payload.get("amount")

    if isinstance(raw, bool) or raw is None:
        return DEFAULT_AMOUNT
    if isinstance(raw, (int, float)):
        number = float(raw)
    elif isinstance(raw, str) and raw.strip():
        try:
            number = float(raw.strip())
        except ValueError:
            return DEFAULT_AMOUNT
    else:
        return DEFAULT_AMOUNT

    if not math.isfinite(number):
        return DEFAULT_AMOUNT
    return int(number) if number.is_integer() else number


def resolve_due_date(value: Any, today: date | None = None) -> str:
    if isinstance(value, str):
        value = value.strip()
        match = _ISO_DATE.fullmatch(value)
        if match:
            try:
                date.fromisoformat(match.group(1))
            except ValueError:
                pass
            else:
                return value
    today = today or datetime.now(UTC).date()
    return (today + timedelta(days=DUE_DATE_OFFSET_DAYS)).isoformat()


def resolve_template(payload: dict[str, Any]) -> tuple[str, str]:
    """Return (template_name, pref_lang_code) for the payload's template selector."""
    selector = next(
        (payload[key] for key in _TEMPLATE_SELECTORS if payload.get(key) is not None),
        None,
    )
    if not isinstance(selector, str) or selector not in TEMPLATES:
        selector = DEFAULT_TEMPLATE
    template_name, forced_lang = TEMPLATES[selector]
    if forced_lang:
        return template_name, forced_lang
    return template_name, payload.get("pref_lang_code") or DEFAULT_LANG_CODE


def _is_truthy(value: Any) -> bool:
    return value not in (None, False, 0, "") and not (
        isinstance(value, float) and math.isnan(value)
    )


def channel_flag(value: Any) -> str:
    if isinstance(value, str):
        return "Y" if value.strip().lower() in _ENABLED_STRINGS else "N"
    if isinstance(value, (bool, int, float)):
        return "Y" if _is_truthy(value) else "N"
    return "N"


def _as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def build_notification_channel(raw: Any) -> dict[str, str]:
    channel = _as_mapping(raw)
    result = {
        "whatsapp": channel_flag(channel.get("whatsapp")),
        "whatsappOD": channel_flag(channel.get("whatsappOD")),
    }
    if _is_truthy(channel.get("whatsappUPIINTENT")):
        result["whatsappUPIINTENT"] = channel_flag(channel["whatsappUPIINTENT"])
    result["sms"] = channel_flag(channel.get("sms"))
    result["email"] = channel_flag(channel.get("email"))
    result["whatsappODPL"] = "Y"
    return result


def build_custom_fields(raw: Any) -> dict[str, Any]:
    custom = _as_mapping(raw)
    return {
        name: "" if custom.get(name) is None else custom[name]
        for name in CUSTOM_FIELDS
    }


def build_request_body(
    phone_number: str,
    payload: dict[str, Any],
    today: date | None = None,
) -> dict[str, Any]:
    template_name, pref_lang_code = resolve_template(payload)
    return {
        "phone_number": phone_number,
        "email": payload.get("email") or DEFAULT_EMAIL,
        "full_name": payload.get("full_name") or DEFAULT_FULL_NAME,
        "amount": resolve_amount(payload),
        "due_date": resolve_due_date(payload.get("due_date"), today),
        "account_id": payload.get("account_id") or DEFAULT_ACCOUNT_ID,
        "send_notification": payload.get("send_notification") is not False,
        "template_name": template_name,
        "merchant_reference_number": payload.get("merchant_reference_number") or "",
        "pref_lang_code": pref_lang_code,
        "notification_channel": build_notification_channel(payload.get("notification_channel")),
        "custom_field": build_custom_fields(payload.get("custom_field")),
    }


def hash_fields(body: dict[str, Any], raw_channel: Any) -> list[tuple[str, Any]]:
    """Ordered (name, value) pairs covered by the integrity hash.

    Channel flags are only included when the inbound notification_channel had
    at least one key. The channel's ``email`` flag is hashed under
    ``notification_email`` so it cannot be confused with the top-level email.
    """
    fields: list[tuple[str, Any]] = [(name, body.get(name)) for name in _HASH_BASE_FIELDS]

    if _as_mapping(raw_channel):
        channel = body["notification_channel"]
        fields.append(("whatsapp", channel.get("whatsapp")))
        fields.append(("whatsappOD", channel.get("whatsappOD")))
        if channel.get("whatsappUPIINTENT"):
            fields.append(("whatsappUPIINTENT", channel["whatsappUPIINTENT"]))
        fields.append(("sms", channel.get("sms")))
        fields.append(("notification_email", channel.get("email")))

    custom = body["custom_field"]
    fields.extend((name, custom.get(name, "")) for name in CUSTOM_FIELDS)
    return fields
