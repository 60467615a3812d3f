"""Balance cache coordinator.

Read-through, time-boxed cache of per-asset balances. This module is the
only writer of the cache; everything else reads through ``BalanceCache``.

Consistency rules:
- the whole snapshot map is replaced in a single assignment, so readers
  see either the old full snapshot or the new one
- overlapping fetches are coalesced into one network call
- ``invalidate`` bumps a generation counter; a fetch that started before
  the invalidation is neither joined by later callers nor allowed to
  write its (possibly pre-commit) result into the cache
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

from assetflow.client.api_client import ApiClient, unwrap_data
from assetflow.config import get_settings
from assetflow.contracts.balances import BalanceResponse, BalanceSnapshot, BalancesResponse
from assetflow.contracts.errors import ErrorCode
from assetflow.exceptions import ConfigurationError
from assetflow.services.error_classifier import Flow, get_classifier, make_error
from assetflow.storage.balance_mirror import BalanceMirror
from assetflow.utils.amounts import first_present, to_decimal
from assetflow.utils.locks import SingleFlight

logger = logging.getLogger(__name__)

BALANCE_PATH = "/balance/balance"


@dataclass(frozen=True)
class _CacheState:
    snapshots: dict[str, BalanceSnapshot] = field(default_factory=dict)
    fetched_at: Optional[float] = None
    total_usd_value: Optional[Decimal] = None
    complete: bool = False


def parse_balances(
    body: Any,
    assets: list[str],
    fetched_at: float,
) -> tuple[list[BalanceSnapshot], Optional[Decimal]]:
    """Normalize a balance payload.

    Accepts the flat shape ``{btcBalance, btcBalanceUSD, btcPendingBalance,
    ..., totalPortfolioBalance}`` and the list shape ``{"balances": [{currency,
    balance, usdValue}]}``, with or without the ``{success, data}`` envelope.
    """
    data = unwrap_data(body)
    entries = None
    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict) and isinstance(data.get("balances"), list):
        entries = data["balances"]

    balances: list[BalanceSnapshot] = []
    if entries is not None:
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            asset = first_present(entry, "asset", "currency", "symbol", "code")
            if not asset:
                continue
            balances.append(
                BalanceSnapshot(
                    asset=str(asset).upper(),
                    native_balance=to_decimal(first_present(entry, "balance", "nativeBalance", "amount"))
                    or Decimal("0"),
                    usd_value=to_decimal(first_present(entry, "usdValue", "balanceUSD", "usd_value")),
                    pending_balance=to_decimal(first_present(entry, "pendingBalance", "pending")),
                    fetched_at=fetched_at,
                )
            )
    elif isinstance(data, dict):
        for asset in assets:
            prefix = asset.lower()
            balances.append(
                BalanceSnapshot(
                    asset=asset,
                    native_balance=to_decimal(data.get(f"{prefix}Balance")) or Decimal("0"),
                    usd_value=to_decimal(data.get(f"{prefix}BalanceUSD")),
                    pending_balance=to_decimal(data.get(f"{prefix}PendingBalance")),
                    fetched_at=fetched_at,
                )
            )
    else:
        raise ValueError(f"Unrecognised balance payload: {type(data).__name__}")

    total = None
    if isinstance(data, dict):
        total = to_decimal(data.get("totalPortfolioBalance"))
    if total is None:
        usd_values = [b.usd_value for b in balances if b.usd_value is not None]
        total = sum(usd_values, Decimal("0")) if usd_values else None
    return balances, total


class BalanceCache:
    """Process-wide balance cache with explicit invalidation."""

    def __init__(
        self,
        api_client: Optional[ApiClient] = None,
        ttl_seconds: Optional[float] = None,
        mirror: Optional[BalanceMirror] = None,
        use_mirror: bool = True,
        assets: Optional[list[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            api_client: Transport (defaults to a new ApiClient)
            ttl_seconds: Default freshness window; callers may pass their own per read
            mirror: Offline mirror (defaults to settings.balance_mirror_path)
            use_mirror: Disable the offline mirror entirely
            assets: Assets read from flat balance payloads
            clock: Time source, epoch seconds
        """
        settings = get_settings()
        self._api = api_client or ApiClient()
        self.ttl_seconds = settings.balance_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        if self.ttl_seconds <= 0:
            raise ConfigurationError(f"Balance cache TTL must be positive, got {self.ttl_seconds}")
        self._timeout = settings.request_timeout_seconds
        self._assets = [a.upper() for a in (assets or settings.balance_asset_list)]
        self._clock = clock

        if not use_mirror:
            self._mirror = None
        elif mirror is not None:
            self._mirror = mirror
        elif settings.balance_mirror_path:
            self._mirror = BalanceMirror(
                settings.balance_mirror_path, settings.offline_max_age_seconds, clock=clock
            )
        else:
            self._mirror = None

        self._state = _CacheState()
        self._generation = 0
        self._flight = SingleFlight("balances")
        self._classifier = get_classifier(Flow.READ)
        self.fetch_count = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, asset: str, ttl: Optional[float] = None) -> BalanceResponse:
        """Balance of one asset, fetched if missing or older than ``ttl``."""
        asset = asset.upper()
        ttl = self.ttl_seconds if ttl is None else ttl

        snapshot = self._state.snapshots.get(asset)
        if snapshot is not None and self._clock() - snapshot.fetched_at < ttl:
            return BalanceResponse(success=True, asset=asset, balance=snapshot, source="cache")

        result = await self._fetch()
        if not result.success:
            return BalanceResponse(success=False, asset=asset, error=result.error)

        snapshot = result.get(asset)
        if snapshot is None:
            return BalanceResponse(
                success=False,
                asset=asset,
                error=make_error(ErrorCode.NOT_FOUND, detail=f"No balance reported for {asset}"),
            )
        return BalanceResponse(success=True, asset=asset, balance=snapshot, source=result.source)

    async def get_all(self, ttl: Optional[float] = None) -> BalancesResponse:
        """All balances, served from cache only if the full set is fresh."""
        ttl = self.ttl_seconds if ttl is None else ttl
        state = self._state
        if (
            state.complete
            and state.fetched_at is not None
            and self._clock() - state.fetched_at < ttl
        ):
            return BalancesResponse(
                success=True,
                balances=list(state.snapshots.values()),
                total_usd_value=state.total_usd_value,
                fetched_at=state.fetched_at,
                source="cache",
            )
        return await self._fetch()

    def is_fresh(self, asset: Optional[str] = None, ttl: Optional[float] = None) -> bool:
        ttl = self.ttl_seconds if ttl is None else ttl
        now = self._clock()
        if asset is not None:
            snapshot = self._state.snapshots.get(asset.upper())
            return snapshot is not None and now - snapshot.fetched_at < ttl
        state = self._state
        return state.complete and state.fetched_at is not None and now - state.fetched_at < ttl

    def get_cache_status(self) -> dict:
        """Cache status for debugging."""
        state = self._state
        age = self._clock() - state.fetched_at if state.fetched_at is not None else None
        return {
            "cached_assets": sorted(state.snapshots),
            "complete": state.complete,
            "age_seconds": age,
            "is_fresh": self.is_fresh(),
            "generation": self._generation,
            "fetch_count": self.fetch_count,
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def invalidate(self, asset: Optional[str] = None) -> None:
        """Drop one asset, or everything (including the offline mirror)."""
        self._generation += 1
        if asset is None:
            self._state = _CacheState()
            if self._mirror is not None:
                self._mirror.clear()
            logger.info("Balance cache cleared")
            return

        asset = asset.upper()
        snapshots = {k: v for k, v in self._state.snapshots.items() if k != asset}
        self._state = _CacheState(
            snapshots=snapshots,
            fetched_at=self._state.fetched_at,
            total_usd_value=self._state.total_usd_value,
            complete=False,
        )
        logger.info("Balance cache entry invalidated: %s", asset)

    def is_refreshing(self) -> bool:
        """True while a fetch started since the last invalidation is in flight."""
        return self._flight.in_flight(self._generation)

    async def force_refresh(self) -> BalancesResponse:
        """Fetch regardless of TTL. Overlapping calls share one fetch."""
        return await self._fetch()

    async def _fetch(self) -> BalancesResponse:
        generation = self._generation
        return await self._flight.do(generation, lambda: self._fetch_and_store(generation))

    async def _fetch_and_store(self, generation: int) -> BalancesResponse:
        self.fetch_count += 1
        logger.info("Fetching balances from API (generation %d)", generation)
        response = await self._api.post(
            BALANCE_PATH, {"types": ["all"]}, timeout=self._timeout
        )

        if not response.ok:
            error = self._classifier.classify(response)
            logger.warning("Balance fetch failed: %s (%s)", error.code.value, error.detail)
            offline = self._offline_fallback()
            if offline is not None:
                return offline
            return BalancesResponse(success=False, error=error)

        fetched_at = self._clock()
        try:
            balances, total = parse_balances(response.body, self._assets, fetched_at)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.error("Failed to parse balance payload: %s", e)
            return BalancesResponse(
                success=False, error=make_error(ErrorCode.UNKNOWN, detail=str(e))
            )

        if generation == self._generation:
            self._state = _CacheState(
                snapshots={b.asset: b for b in balances},
                fetched_at=fetched_at,
                total_usd_value=total,
                complete=True,
            )
            if self._mirror is not None:
                self._mirror.save(balances, fetched_at)
            logger.info("Balance cache updated with %d assets", len(balances))
        else:
            logger.info(
                "Discarding balance fetch from generation %d (now %d)",
                generation,
                self._generation,
            )

        return BalancesResponse(
            success=True,
            balances=balances,
            total_usd_value=total,
            fetched_at=fetched_at,
            source="network",
        )

    def _offline_fallback(self) -> Optional[BalancesResponse]:
        if self._mirror is None:
            return None
        loaded = self._mirror.load()
        if loaded is None:
            return None
        balances, fetched_at = loaded
        logger.info("Serving offline balances from %s", self._mirror.path)
        usd_values = [b.usd_value for b in balances if b.usd_value is not None]
        return BalancesResponse(
            success=True,
            balances=balances,
            total_usd_value=sum(usd_values, Decimal("0")) if usd_values else None,
            fetched_at=fetched_at,
            source="offline",
        )


_balance_cache: Optional[BalanceCache] = None


def get_balance_cache() -> BalanceCache:
    """Get the process-wide balance cache."""
    global _balance_cache
    if _balance_cache is None:
        _balance_cache = BalanceCache()
    return _balance_cache


def reset_balance_cache() -> None:
    """Forget the process-wide cache (useful for testing)."""
    global _balance_cache
    _balance_cache = None
