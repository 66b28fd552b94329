"""Tamper-evident audit trail of payment webhook outcomes.

Entries are JSON lines numbered by ``seq``. Each line stores the hash of the
previous entry and its own ``hash`` over the rest of the line, so editing,
dropping or reordering an entry breaks verification. Sequence and chain
continue across size-based rotation: ``audit.jsonl.N`` (oldest) through
``audit.jsonl.1`` and then ``audit.jsonl`` read as one ordered trail.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from payment_webhook.models import AuditEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10_485_760
DEFAULT_BACKUP_COUNT = 5


@dataclass
class TrailVerification:
    valid: bool
    entries: int = 0
    broken_file: Path | None = None
    broken_line: int | None = None
    reason: str | None = None


def entry_hash(entry: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON of an entry, excluding its own hash."""
    body = {k: v for k, v in entry.items() if k != "hash"}
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def trail_files(log_path: Path) -> list[Path]:
    """Existing trail files, oldest first."""
    backups = sorted(
        (p for p in log_path.parent.glob(f"{log_path.name}.*") if p.suffix[1:].isdigit()),
        key=lambda p: int(p.suffix[1:]),
        reverse=True,
    )
    return [*backups, log_path] if log_path.exists() else backups


def _read_lines(path: Path) -> Iterator[tuple[int, str]]:
    for line_no, line in enumerate(path.read_text().splitlines(), start=1):
        if line.strip():
            yield line_no, line


def _chain_error(
    entry: dict[str, Any], prev_hash: str | None, expected_seq: int | None,
) -> str | None:
    if entry.get("hash") != entry_hash(entry):
        return "entry hash mismatch"
    if expected_seq is None:
        return None
    if entry.get("prev_hash") != prev_hash:
        return "prev_hash does not match previous entry"
    if entry.get("seq") != expected_seq:
        return f"expected seq {expected_seq}, got {entry.get('seq')}"
    return None


def verify_audit_trail(log_path: Path) -> TrailVerification:
    """Walk every retained file in order and check hashes, links and sequence.

    The first retained entry may point at a backup that rotation already
    deleted, so its ``prev_hash`` is taken as given.
    """
    count = 0
    prev_hash: str | None = None
    expected_seq: int | None = None

    for path in trail_files(log_path):
        for line_no, line in _read_lines(path):
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                entry = None
            if not isinstance(entry, dict) or not isinstance(entry.get("seq"), int):
                reason = "unreadable entry"
            else:
                reason = _chain_error(entry, prev_hash, expected_seq)
            if reason:
                return TrailVerification(
                    valid=False, entries=count, broken_file=path,
                    broken_line=line_no, reason=reason,
                )
            prev_hash = entry["hash"]
            expected_seq = int(entry["seq"]) + 1
            count += 1

    return TrailVerification(valid=True, entries=count)


def find_transaction(log_path: Path, transaction_id: str) -> list[dict[str, Any]]:
    """All retained entries recorded for a transaction, oldest first."""
    matches = []
    for path in trail_files(log_path):
        for _, line in _read_lines(path):
            entry = json.loads(line)
            if entry.get("transaction_id") == transaction_id:
                matches.append(entry)
    return matches


class WebhookAuditTrail:
    """Appends one chained entry per webhook outcome."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._next_seq = 0
        self._last_hash: str | None = None
        self._resume()

    @classmethod
    def from_env(cls, log_path: str) -> WebhookAuditTrail:
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("PAYMENT_WEBHOOK_AUDIT_MAX_BYTES", DEFAULT_MAX_BYTES)),
            backup_count=int(
                os.environ.get("PAYMENT_WEBHOOK_AUDIT_BACKUP_COUNT", DEFAULT_BACKUP_COUNT),
            ),
        )

    def _resume(self) -> None:
        # Newest file first; a freshly rotated trail may have an empty current file
        for path in reversed(trail_files(self.log_path)):
            last = None
            for _, line in _read_lines(path):
                last = line
            if last is not None:
                entry = json.loads(last)
                self._next_seq = int(entry["seq"]) + 1
                self._last_hash = entry["hash"]
                return

    def record(self, event: AuditEvent) -> dict[str, Any]:
        """Append ``event`` to the trail and return the stored entry."""
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self._locked():
            self._rotate_if_full()
            entry: dict[str, Any] = {
                "seq": self._next_seq,
                **json.loads(event.model_dump_json(exclude_none=True)),
                "prev_hash": self._last_hash,
            }
            entry["hash"] = entry_hash(entry)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(entry, separators=(",", ":")) + "\n")

        self._next_seq += 1
        self._last_hash = entry["hash"]
        return entry

    @contextmanager
    def _locked(self) -> Iterator[None]:
        lock_file = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_file, "w") as lf:
            fcntl.flock(lf, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lf, fcntl.LOCK_UN)

    def _rotate_if_full(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return
        if self._backup_count < 1:
            self.log_path.unlink()
            return

        def backup(index: int) -> Path:
            return self.log_path.with_name(f"{self.log_path.name}.{index}")

        backup(self._backup_count).unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            if backup(index).exists():
                os.replace(backup(index), backup(index + 1))
        os.replace(self.log_path, backup(1))
        logger.info("Rotated audit trail %s at seq %d", self.log_path, self._next_seq)
