"""FastAPI application exposing the payment webhook."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from urllib.parse import parse_qs, urlsplit

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from payment_webhook.audit.trail import WebhookAuditTrail
from payment_webhook.config import WebhookConfig
from payment_webhook.models import AuditEvent, AuditEventType, RiskLevel
from payment_webhook.webhook.dispatcher import PaymentWebhookDispatcher
from payment_webhook.webhook.models import WebhookReply
from payment_webhook.webhook.normalizer import PayloadRejectedError, is_hi, normalize_request

logger = logging.getLogger(__name__)

SERVICE_NAME = "Payment Webhook Handler"
SERVICE_VERSION = "1.0.0"
WEBHOOK_PATH = "/api/payment-webhook"

ENDPOINTS = {
    "post": f"POST {WEBHOOK_PATH} - Accept payment notifications with phone number",
    "get": f"GET {WEBHOOK_PATH} - Health check (?message=hi echoes hello)",
}


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: audit settings come from the environment.

    Forwarding settings are not captured here; they are re-read per request.
    """
    audit_log = os.environ.get("PAYMENT_WEBHOOK_AUDIT_LOG")
    audit_trail = WebhookAuditTrail.from_env(audit_log) if audit_log else None
    return create_app(audit_trail=audit_trail)


def create_app(
    config_loader: Callable[[], WebhookConfig] = WebhookConfig.from_env,
    audit_trail: WebhookAuditTrail | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create the webhook app.

    ``config_loader`` is called once per POST; ``upstream_transport`` is passed
    to the forwarding httpx client.
    """
    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get(WEBHOOK_PATH)
    async def webhook_status(request: Request) -> Response:
        if query_requests_echo(str(request.url)):
            return _to_response(WebhookReply.echo())
        logger.info("Payment webhook health check")
        return JSONResponse(
            {
                "service": SERVICE_NAME,
                "status": "operational",
                "version": SERVICE_VERSION,
                "endpoints": ENDPOINTS,
            },
            status_code=200,
        )

    @app.post(WEBHOOK_PATH)
    async def receive_webhook(request: Request) -> Response:
        try:
            return _to_response(await _handle_notification(request))
        except Exception as exc:
            logger.exception("Unexpected error handling payment webhook")
            return _to_response(WebhookReply(
                content={
                    "success": False,
                    "message": "Internal server error",
                    "error": str(exc) or "Unknown error",
                },
                status_code=500,
            ))

    async def _handle_notification(request: Request) -> WebhookReply:
        content_type = request.headers.get("content-type", "")
        raw = await request.body()
        logger.info("POST request received (content-type=%r)", content_type)

        try:
            notification = normalize_request(content_type, raw)
        except PayloadRejectedError as exc:
            if audit_trail:
                audit_trail.record(AuditEvent(
                    event_type=AuditEventType.WEBHOOK_REJECTED,
                    source_ip=request.client.host if request.client else None,
                    action="normalize",
                    result="rejected",
                    risk_level=RiskLevel.LOW,
                    error=exc.error,
                ))
            return WebhookReply.error(exc.error, exc.message, status_code=exc.status_code)

        if notification is None:
            return WebhookReply.echo()

        dispatcher = PaymentWebhookDispatcher(
            config_loader(),
            audit_trail=audit_trail,
            transport=upstream_transport,
        )
        return await dispatcher.dispatch(notification)

    return app


def query_requests_echo(url: str) -> bool:
    """True when ``message`` or ``msg`` in the query string is 'hi'.

    Unparseable URLs are treated as having no query.
    """
    try:
        params = parse_qs(urlsplit(url).query)
    except ValueError:
        logger.warning("Could not parse request URL %r", url)
        return False
    return any(is_hi(value) for name in ("message", "msg") for value in params.get(name, []))


def _to_response(reply: WebhookReply) -> Response:
    if reply.is_text:
        return PlainTextResponse(reply.content, status_code=reply.status_code)
    return JSONResponse(reply.content, status_code=reply.status_code)
