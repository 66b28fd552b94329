"""Shared test fixtures for the payment webhook."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from payment_webhook.audit.trail import WebhookAuditTrail
from payment_webhook.config import WebhookConfig
from payment_webhook.webhook.models import Notification

VALID_AES_KEY = "12345678901234567890123456789012"  # 32 bytes
API_URL = "https://example.com/forward"
BIZ_TOKEN = "test-biz-token"

WEBHOOK_ENV_VARS = (
    "PAYMENT_WEBHOOK_FORWARD_ENABLED",
    "PL_FORWARD_ENABLED",
    "PL_API_URL",
    "PL_AES_KEY",
    "PL_X_BIZ_TOKEN",
    "PL_USE_HASH",
    "PL_CLIENT_ID",
    "PL_CLIENT_SECRET",
)


@pytest.fixture(autouse=True)
def clean_webhook_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test with forwarding disabled and no partner settings."""
    for name in WEBHOOK_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def forwarding_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PL_FORWARD_ENABLED", "true")
    monkeypatch.setenv("PL_API_URL", API_URL)
    monkeypatch.setenv("PL_AES_KEY", VALID_AES_KEY)
    monkeypatch.setenv("PL_X_BIZ_TOKEN", BIZ_TOKEN)


@pytest.fixture
def mock_audit_trail() -> MagicMock:
    return MagicMock(spec=WebhookAuditTrail)


class UpstreamRecorder:
    """httpx.MockTransport handler that records requests and replays a canned response."""

    def __init__(
        self,
        status_code: int = 200,
        body: str | dict[str, Any] = "",
        error: Exception | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = json.dumps(body) if isinstance(body, dict) else body
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def upstream() -> Callable[..., UpstreamRecorder]:
    return UpstreamRecorder


# --- Factory functions for test data ---


def make_config(**kwargs: Any) -> WebhookConfig:
    """Factory for a forwarding-enabled WebhookConfig with valid settings."""
    defaults: dict[str, Any] = {
        "forward_enabled": True,
        "api_url": API_URL,
        "aes_key": VALID_AES_KEY,
        "biz_token": BIZ_TOKEN,
    }
    defaults.update(kwargs)
    return WebhookConfig(**defaults)


def make_notification(phone_number: str = "+15550001111", **payload: Any) -> Notification:
    payload.setdefault("phone_number", phone_number)
    return Notification(phone_number=phone_number, payload=payload)
