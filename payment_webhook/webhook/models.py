"""Data models for the payment webhook pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ECHO_TEXT = " hello "


@dataclass
class Notification:
    """Validated inbound payment notification."""

    phone_number: str  # normalized
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def transaction_id(self) -> Any:
        return self.payload.get("transactionId")


@dataclass
class WebhookReply:
    """Pipeline result to return to the caller.

    ``content`` is a JSON-serializable dict, or a string for plain-text replies.
    """

    content: dict[str, Any] | str
    status_code: int = 200

    @property
    def is_text(self) -> bool:
        return isinstance(self.content, str)

    @classmethod
    def echo(cls) -> WebhookReply:
        return cls(content=ECHO_TEXT, status_code=200)

    @classmethod
    def error(cls, error: str, message: str, status_code: int, **extra: Any) -> WebhookReply:
        return cls(
            content={"success": False, **extra, "error": error, "message": message},
            status_code=status_code,
        )
