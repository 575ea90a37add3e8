"""
Dormancy aggregator: fleet-wide dormant-wallet series and locked-value estimate.

Input is a full capsule scan. Each owner counts once, at the freshest
last-activity across all of their capsules. A wallet is dormant at time T
when T - last_activity >= threshold. The series recomputes that count at
bucket_count checkpoints spaced spacing_months calendar months apart, oldest
first, ending at now.

Balance lookups are bounded by a semaphore; a failed lookup counts as zero.
A failed price lookup yields a zero fiat estimate and keeps the native total.
"""

from __future__ import annotations

import asyncio
import calendar
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.core.exceptions import ExternalFeedUnavailable
from capsule_ledger.onchain.account_decoder import OWNER_OFFSET, CapsuleSnapshot, decode_program_accounts
from capsule_ledger.onchain.rpc_client import SolanaRpcClient

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
DEFAULT_SPACING_MONTHS = 2
DEFAULT_BUCKET_COUNT = 6

BalanceLookup = Callable[[str], Awaitable[int]]
PriceLookup = Callable[[], Awaitable[float]]


@dataclass(frozen=True)
class DormancyStats:
    series: list[int] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    dormant_count: int = 0
    estimated_assets_sol: float = 0.0
    estimated_assets_usd: float = 0.0
    price_usd: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "series": list(self.series),
            "labels": list(self.labels),
            "dormant_count": self.dormant_count,
            "estimated_assets_sol": self.estimated_assets_sol,
            "estimated_assets_usd": self.estimated_assets_usd,
            "price_usd": self.price_usd,
        }


def latest_activity_by_owner(snapshots: Iterable[CapsuleSnapshot]) -> dict[str, int]:
    """Owner address -> max last_activity across that owner's capsules."""
    latest: dict[str, int] = {}
    for snapshot in snapshots:
        owner = snapshot.owner_address
        last = snapshot.last_activity_unix_seconds
        if owner not in latest or last > latest[owner]:
            latest[owner] = last
    return latest


def is_dormant(last_activity: int, now: int, threshold_sec: int) -> bool:
    return now - last_activity >= threshold_sec


def shift_months(moment: datetime, months: int) -> datetime:
    """Move by whole calendar months, clamping the day to the target month's length."""
    index = moment.year * 12 + (moment.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def checkpoint_times(
    now: int,
    bucket_count: int = DEFAULT_BUCKET_COUNT,
    spacing_months: int = DEFAULT_SPACING_MONTHS,
) -> list[datetime]:
    """Checkpoint datetimes (UTC), oldest first; the last one is now."""
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    return [shift_months(current, -i * spacing_months) for i in range(bucket_count - 1, -1, -1)]


def series_labels(checkpoints: Iterable[datetime]) -> list[str]:
    return [point.strftime("%b") for point in checkpoints]


def compute_dormancy_series(
    latest: dict[str, int],
    now: int,
    threshold_sec: int,
    bucket_count: int = DEFAULT_BUCKET_COUNT,
    spacing_months: int = DEFAULT_SPACING_MONTHS,
) -> tuple[list[int], list[str]]:
    """Retrospective dormant counts per checkpoint, with short month labels."""
    checkpoints = checkpoint_times(now, bucket_count, spacing_months)
    activity = list(latest.values())
    series = []
    for point in checkpoints:
        at = int(point.timestamp())
        series.append(sum(1 for last in activity if is_dormant(last, at, threshold_sec)))
    return series, series_labels(checkpoints)


def empty_stats(
    now: int,
    bucket_count: int = DEFAULT_BUCKET_COUNT,
    spacing_months: int = DEFAULT_SPACING_MONTHS,
) -> DormancyStats:
    """Well-formed all-zero stats (labels still populated) for degraded responses."""
    checkpoints = checkpoint_times(now, bucket_count, spacing_months)
    return DormancyStats(series=[0] * bucket_count, labels=series_labels(checkpoints))


async def scan_capsules(
    rpc: SolanaRpcClient,
    program_id: str,
    owner: str | None = None,
) -> list[tuple[str, CapsuleSnapshot]]:
    """
    Decode every capsule account owned by the program, optionally only one
    owner's (memcmp on the owner field).
    """
    if not program_id:
        logger.warning("capsule_program_id_missing")
        return []
    filters = [{"memcmp": {"offset": OWNER_OFFSET, "bytes": owner}}] if owner else None
    accounts = await rpc.get_program_accounts(program_id, filters=filters)
    return decode_program_accounts(accounts)


class DormancyAggregator:
    def __init__(
        self,
        balance_lookup: BalanceLookup,
        price_lookup: PriceLookup | None = None,
        *,
        max_concurrency: int = 8,
        spacing_months: int = DEFAULT_SPACING_MONTHS,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._balance_lookup = balance_lookup
        self._price_lookup = price_lookup
        self._max_concurrency = max_concurrency
        self._spacing_months = spacing_months

    async def _balance(self, semaphore: asyncio.Semaphore, owner: str) -> int:
        async with semaphore:
            try:
                return max(0, int(await self._balance_lookup(owner)))
            except Exception as e:
                logger.warning("balance_lookup_failed", wallet_id=owner, error=str(e))
                return 0

    async def _price(self) -> float:
        if self._price_lookup is None:
            return 0.0
        try:
            price = float(await self._price_lookup())
        except ExternalFeedUnavailable as e:
            logger.warning("price_feed_unavailable", feed=e.feed, error=e.reason)
            return 0.0
        except Exception as e:
            logger.warning("price_feed_unavailable", feed="price_lookup", error=str(e) or e.__class__.__name__)
            return 0.0
        if not math.isfinite(price) or price < 0:
            logger.warning("price_feed_unavailable", feed="price_lookup", error=f"unusable price {price!r}")
            return 0.0
        return price

    async def aggregate(
        self,
        snapshots: Iterable[CapsuleSnapshot],
        now: int,
        threshold_sec: int,
        bucket_count: int = DEFAULT_BUCKET_COUNT,
    ) -> DormancyStats:
        latest = latest_activity_by_owner(snapshots)
        dormant_owners = sorted(owner for owner, last in latest.items() if is_dormant(last, now, threshold_sec))

        semaphore = asyncio.Semaphore(self._max_concurrency)
        balances, price = await asyncio.gather(
            asyncio.gather(*(self._balance(semaphore, owner) for owner in dormant_owners)),
            self._price(),
        )
        total_sol = sum(balances) / LAMPORTS_PER_SOL
        total_usd = total_sol * price if price else 0.0

        series, labels = compute_dormancy_series(latest, now, threshold_sec, bucket_count, self._spacing_months)
        logger.info(
            "dormancy_aggregated",
            owners=len(latest),
            dormant_count=len(dormant_owners),
            estimated_assets_sol=total_sol,
            price_usd=price,
        )
        return DormancyStats(
            series=series,
            labels=labels,
            dormant_count=len(dormant_owners),
            estimated_assets_sol=total_sol,
            estimated_assets_usd=total_usd,
            price_usd=price,
        )
