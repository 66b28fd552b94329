"""Click CLI for inspecting and exercising the payment webhook."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import httpx

from payment_webhook.audit.trail import find_transaction, verify_audit_trail
from payment_webhook.webhook.canonical import build_request_body, hash_fields
from payment_webhook.webhook.crypto import (
    InvalidKeyError,
    aes_decrypt_base64,
    aes_encrypt_base64,
    compute_hash,
)
from payment_webhook.webhook.normalizer import (
    PayloadRejectedError,
    extract_phone_number,
    parse_body,
)


def _load_payload(payload_file: str) -> dict[str, Any]:
    try:
        payload = parse_body("application/json", Path(payload_file).read_bytes())
    except PayloadRejectedError as exc:
        raise click.BadParameter(exc.message, param_hint="PAYLOAD_FILE") from exc
    if not isinstance(payload, dict):
        raise click.BadParameter("payload must be a JSON object", param_hint="PAYLOAD_FILE")
    return payload


def _canonical_body(
    payload: dict[str, Any], client_id: str | None, client_secret: str | None,
) -> dict[str, Any]:
    try:
        phone_number = extract_phone_number(payload)
    except PayloadRejectedError as exc:
        raise click.ClickException(f"{exc.error}: {exc.message}") from exc
    body = build_request_body(phone_number, payload)
    if client_id and client_secret:
        fields = hash_fields(body, payload.get("notification_channel"))
        body["hash"] = compute_hash(client_id, client_secret, fields)
    return body


@click.group()
def cli() -> None:
    """Payment webhook operator tools."""


@cli.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--client-id", envvar="PL_CLIENT_ID", default=None, help="Hash client id.")
@click.option("--client-secret", envvar="PL_CLIENT_SECRET", default=None, help="Hash client secret.")
def preview(payload_file: str, client_id: str | None, client_secret: str | None) -> None:
    """Print the canonical body that would be forwarded for a JSON payload."""
    body = _canonical_body(_load_payload(payload_file), client_id, client_secret)
    click.echo(json.dumps(body, indent=2))


@cli.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--key", envvar="PL_AES_KEY", required=True, help="32-byte AES key.")
@click.option("--client-id", envvar="PL_CLIENT_ID", default=None, help="Hash client id.")
@click.option("--client-secret", envvar="PL_CLIENT_SECRET", default=None, help="Hash client secret.")
def encrypt(
    payload_file: str, key: str, client_id: str | None, client_secret: str | None,
) -> None:
    """Print the base64 ciphertext the forwarder would send."""
    body = _canonical_body(_load_payload(payload_file), client_id, client_secret)
    plaintext = json.dumps(body, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    try:
        click.echo(aes_encrypt_base64(plaintext, key))
    except InvalidKeyError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.argument("ciphertext")
@click.option("--key", envvar="PL_AES_KEY", required=True, help="32-byte AES key.")
def decrypt(ciphertext: str, key: str) -> None:
    """Decrypt a forwarded payload (base64) back to JSON text."""
    try:
        click.echo(aes_decrypt_base64(ciphertext, key))
    except (InvalidKeyError, ValueError) as exc:
        raise click.ClickException(f"Cannot decrypt payload: {exc}") from exc


@cli.command("send-test")
@click.argument("url")
@click.option("--phone", default="9953969666", help="Phone number to send.")
@click.option("--due-amount", default=3000, type=float, help="dueAmount field.")
@click.option("--transaction-id", default="test_txn_001", help="transactionId field.")
def send_test(url: str, phone: str, due_amount: float, transaction_id: str) -> None:
    """POST a sample payment notification to a running webhook."""
    payload = {
        "phone_number": phone,
        "dueAmount": int(due_amount) if due_amount.is_integer() else due_amount,
        "transactionId": transaction_id,
        "status": "pending",
    }
    try:
        resp = httpx.post(url, json=payload, timeout=30.0)
    except httpx.HTTPError as exc:
        raise click.ClickException(f"Request failed: {exc}") from exc
    click.echo(f"HTTP {resp.status_code}")
    click.echo(resp.text)


@cli.command("verify-audit")
@click.argument("log_path", type=click.Path(dir_okay=False))
def verify_audit(log_path: str) -> None:
    """Verify the hash chain across the audit log and its rotated backups."""
    result = verify_audit_trail(Path(log_path))
    if not result.valid:
        click.echo(
            f"Audit trail broken at {result.broken_file}:{result.broken_line}: {result.reason}",
            err=True,
        )
        raise SystemExit(1)
    click.echo(f"Audit trail valid ({result.entries} entries)")


@cli.command("audit-lookup")
@click.argument("log_path", type=click.Path(dir_okay=False))
@click.argument("transaction_id")
def audit_lookup(log_path: str, transaction_id: str) -> None:
    """Print every audit entry recorded for a transaction, one JSON object per line."""
    entries = find_transaction(Path(log_path), transaction_id)
    if not entries:
        raise click.ClickException(f"No audit entries for transaction {transaction_id}")
    for entry in entries:
        click.echo(json.dumps(entry))
