"""Shared Pydantic data models for the payment webhook service."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

# --- Enums ---


class AuditEventType(str, Enum):
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_FORWARDED = "webhook_forwarded"
    FORWARD_FAILED = "forward_failed"
    CONFIG_MISSING = "config_missing"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def mask_phone(phone_number: str) -> str:
    """Keep only the last four digits of a phone number for audit records."""
    if len(phone_number) <= 4:
        return "*" * len(phone_number)
    return "*" * (len(phone_number) - 4) + phone_number[-4:]


class AuditEvent(BaseModel):
    """One webhook outcome. ``phone`` is masked to its last four digits on input."""

    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    transaction_id: str | None = None
    phone: str | None = None
    upstream_status: int | None = None
    error: str | None = None
    action: str
    result: str  # "success" | "failure" | "rejected"
    risk_level: RiskLevel
    details: dict[str, object] | None = None

    @field_validator("phone")
    @classmethod
    def _mask_phone(cls, value: str | None) -> str | None:
        return mask_phone(value) if value is not None else None
