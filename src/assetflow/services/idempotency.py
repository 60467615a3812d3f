"""Idempotency keys and the client-side record of what each key did.

A key is generated once per user action and sent with every retry of
that action, so the backend can deduplicate repeated delivery.
"""

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from assetflow.contracts.transfers import TransferResponse

logger = logging.getLogger(__name__)


def generate_key() -> str:
    """Return a fresh UUID4 idempotency key (122 random bits)."""
    return str(uuid.uuid4())


def request_fingerprint(path: str, payload: Any) -> str:
    """Stable hash of the request a key was first used for."""
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(f"{path}|{canonical}".encode()).hexdigest()


@dataclass
class KeyRecord:
    fingerprint: str
    touched_at: float
    attempts: int = 0
    outcome: Optional[TransferResponse] = None
    outcome_unknown: bool = False


@dataclass
class IdempotencyLedger:
    """In-memory record of keys used by this process.

    - binds each key to the request it was first used for
    - keeps the successful outcome so a repeat call can be answered locally
    - flags keys whose outcome is unknown (cancelled mid-flight)

    Keys untouched for ``retention_seconds`` are forgotten on the next bind.
    """

    retention_seconds: Optional[float] = None
    clock: Callable[[], float] = time.time
    _records: dict[str, KeyRecord] = field(default_factory=dict)

    def bind(self, key: str, fingerprint: str) -> bool:
        """Bind ``key`` to ``fingerprint``. False if it is bound to another request."""
        self.prune()
        record = self._records.get(key)
        if record is None:
            self._records[key] = KeyRecord(fingerprint=fingerprint, touched_at=self.clock())
            return True
        if record.fingerprint != fingerprint:
            return False
        record.touched_at = self.clock()
        return True

    def note_attempt(self, key: str) -> int:
        record = self._records[key]
        record.attempts += 1
        record.touched_at = self.clock()
        return record.attempts

    def attempts(self, key: str) -> int:
        record = self._records.get(key)
        return record.attempts if record else 0

    def record_success(self, key: str, response: TransferResponse) -> None:
        record = self._records[key]
        record.outcome = response
        record.touched_at = self.clock()
        record.outcome_unknown = False

    def mark_unknown(self, key: str) -> None:
        record = self._records.get(key)
        if record is not None and record.outcome is None:
            record.outcome_unknown = True
            logger.warning("Outcome unknown for idempotency key %s; resolve via status lookup", key)

    def outcome(self, key: str) -> Optional[TransferResponse]:
        record = self._records.get(key)
        return record.outcome if record else None

    def is_unknown(self, key: str) -> bool:
        record = self._records.get(key)
        return bool(record and record.outcome_unknown)

    def unresolved_keys(self) -> list[str]:
        return [k for k, r in self._records.items() if r.outcome_unknown]

    def prune(self) -> int:
        if self.retention_seconds is None:
            return 0
        cutoff = self.clock() - self.retention_seconds
        stale = [k for k, r in self._records.items() if r.touched_at < cutoff]
        for key in stale:
            del self._records[key]
        if stale:
            logger.debug("Forgot %d idempotency keys", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._records.clear()
