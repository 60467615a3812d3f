"""On-disk mirror of the last known balances.

Used only as an offline fallback when a balance fetch fails. Each write
records the fetch timestamp; mirrors older than the configured max age
are deleted instead of served.
"""

import json
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from assetflow.contracts.balances import BalanceSnapshot

logger = logging.getLogger(__name__)


class BalanceMirror:
    """JSON file holding one full balance snapshot."""

    def __init__(
        self,
        path: Union[str, Path],
        max_age_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def save(self, balances: list[BalanceSnapshot], fetched_at: float) -> None:
        payload = {
            "timestamp": fetched_at,
            "balances": [b.model_dump(mode="json") for b in balances],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload), encoding="utf-8")
            tmp.replace(self.path)
            logger.debug("Balance mirror written to %s", self.path)
        except OSError as e:
            logger.warning("Failed to store balance mirror: %s", e)

    def load(self) -> Optional[tuple[list[BalanceSnapshot], float]]:
        """Return (balances, fetched_at), or None if missing, unreadable or too old."""
        if not self.path.exists():
            logger.debug("No balance mirror at %s", self.path)
            return None

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            fetched_at = float(payload["timestamp"])
            balances = [BalanceSnapshot.model_validate(b) for b in payload["balances"]]
        except (OSError, ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning("Unreadable balance mirror, discarding: %s", e)
            self.clear()
            return None

        age = self._clock() - fetched_at
        if age > self.max_age_seconds:
            logger.info("Balance mirror is %.0fs old, removing", age)
            self.clear()
            return None

        return balances, fetched_at

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove balance mirror: %s", e)
