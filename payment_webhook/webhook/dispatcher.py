"""Payment notification dispatcher.

Either acknowledges a validated notification locally or, when forwarding is
enabled, relays it to the upstream partner API:

1. Required configuration check (CONFIG_MISSING, 500)
2. Canonical body construction
3. Optional SHA-512 integrity hash (client credentials required)
4. AES-256-CBC encryption
5. POST to upstream via httpx
6. Upstream status and body mapped onto the reply
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from payment_webhook.models import AuditEvent, AuditEventType, RiskLevel
from payment_webhook.webhook.canonical import build_request_body, hash_fields
from payment_webhook.webhook.crypto import aes_encrypt_base64, compute_hash
from payment_webhook.webhook.models import Notification, WebhookReply

if TYPE_CHECKING:
    from payment_webhook.audit.trail import WebhookAuditTrail
    from payment_webhook.config import WebhookConfig

logger = logging.getLogger(__name__)

CONFIG_MISSING = "CONFIG_MISSING"
FORWARD_FAILED = "FORWARD_FAILED"


class ConfigMissingError(Exception):
    """Raised when forwarding is enabled but required settings are absent."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Forwarding configuration missing: {', '.join(missing)}")


class PaymentWebhookDispatcher:
    """Acknowledges or forwards one notification according to a config snapshot."""

    def __init__(
        self,
        config: WebhookConfig,
        audit_trail: WebhookAuditTrail | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._audit = audit_trail
        self._transport = transport

    async def dispatch(self, notification: Notification) -> WebhookReply:
        if not self._config.forward_enabled:
            return self.acknowledge(notification)
        return await self.forward(notification)

    def acknowledge(self, notification: Notification) -> WebhookReply:
        timestamp = datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        content: dict[str, Any] = {
            "success": True,
            "message": f"Phone number {notification.phone_number} received",
            "phoneNumber": notification.phone_number,
            "timestamp": timestamp,
        }
        if notification.transaction_id:
            content["transactionId"] = notification.transaction_id

        logger.info(
            "Payment notification acknowledged: phone=%s transactionId=%s",
            notification.phone_number,
            notification.transaction_id,
        )
        self._log_event(
            notification,
            AuditEventType.WEBHOOK_RECEIVED,
            action="acknowledge",
            result="success",
        )
        return WebhookReply(content=content, status_code=200)

    def build_payload(self, notification: Notification) -> dict[str, Any]:
        """Canonical body plus the integrity hash when hashing is enabled."""
        body = build_request_body(notification.phone_number, notification.payload)
        if self._config.use_hash:
            missing = self._config.missing_hash_settings()
            if missing:
                raise ConfigMissingError(missing)
            fields = hash_fields(body, notification.payload.get("notification_channel"))
            body["hash"] = compute_hash(
                self._config.client_id, self._config.client_secret, fields,
            )
        return body

    async def forward(self, notification: Notification) -> WebhookReply:
        missing = self._config.missing_forwarding_settings()
        if missing:
            return self._config_missing(notification, ConfigMissingError(missing))

        try:
            body = self.build_payload(notification)
            plaintext = json.dumps(
                body, separators=(",", ":"), ensure_ascii=False, allow_nan=False,
            )
            encrypted = aes_encrypt_base64(plaintext, self._config.aes_key)
            response = await self._post_to_upstream(encrypted)
            data = _parse_upstream_body(response.text)
        except ConfigMissingError as exc:
            return self._config_missing(notification, exc)
        except Exception as exc:
            logger.exception("Forwarding payment notification failed: %s", exc)
            self._log_event(
                notification,
                AuditEventType.FORWARD_FAILED,
                action="forward",
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                error=FORWARD_FAILED,
                details={"exception": type(exc).__name__},
            )
            return WebhookReply.error(
                FORWARD_FAILED,
                "Failed to forward payment notification",
                status_code=502,
                forwarded=True,
            )

        logger.info(
            "Upstream responded: status=%s phone=%s amount=%s",
            response.status_code,
            notification.phone_number,
            body["amount"],
        )
        self._log_event(
            notification,
            AuditEventType.WEBHOOK_FORWARDED,
            action="forward",
            result="success" if response.is_success else "failure",
            upstream_status=response.status_code,
        )
        return WebhookReply(
            content={
                "success": response.is_success,
                "forwarded": True,
                "status": response.status_code,
                "data": data,
            },
            status_code=response.status_code,
        )

    async def _post_to_upstream(self, encrypted: str) -> httpx.Response:
        # The partner expects the raw base64 string under a JSON content type
        headers = {
            "X-Biz-Token": self._config.biz_token,
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(transport=self._transport) as client:
            return await client.post(
                self._config.api_url, content=encrypted, headers=headers,
            )

    def _config_missing(
        self, notification: Notification, exc: ConfigMissingError,
    ) -> WebhookReply:
        logger.error("%s", exc)
        self._log_event(
            notification,
            AuditEventType.CONFIG_MISSING,
            action="forward",
            result="failure",
            risk_level=RiskLevel.HIGH,
            error=CONFIG_MISSING,
            details={"missing": exc.missing},
        )
        return WebhookReply.error(
            CONFIG_MISSING, "Forwarding configuration missing", status_code=500,
        )

    def _log_event(
        self,
        notification: Notification,
        event_type: AuditEventType,
        action: str,
        result: str,
        risk_level: RiskLevel = RiskLevel.INFO,
        upstream_status: int | None = None,
        error: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        if not self._audit:
            return
        transaction_id = notification.transaction_id
        self._audit.record(AuditEvent(
            event_type=event_type,
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            phone=notification.phone_number,
            upstream_status=upstream_status,
            error=error,
            action=action,
            result=result,
            risk_level=risk_level,
            details=details,
        ))


def _parse_upstream_body(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}
