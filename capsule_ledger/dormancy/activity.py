"""
Wallet activity and capsule status.

A capsule is executable when it is active, its inactivity period has fully
elapsed since the on-chain last activity, and the indexer shows no newer
wallet activity that would restart the clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from capsule_ledger.ledger.evidence import extract_block_time
from capsule_ledger.onchain.account_decoder import CapsuleSnapshot
from capsule_ledger.onchain.indexer_client import transaction_signature

READY_FOR_EXECUTION = "Ready for execution"


@dataclass(frozen=True)
class WalletActivity:
    wallet: str
    last_signature: str | None = None
    last_activity: int | None = None
    """Unix seconds of the newest transaction; None when there is no history."""
    transaction_count: int = 0


def summarize_activity(wallet: str, transactions: Iterable[dict[str, Any]]) -> WalletActivity:
    """Newest transaction (by block time) from an indexer history."""
    txs = [tx for tx in transactions if isinstance(tx, dict)]
    newest: dict[str, Any] | None = None
    newest_time: int | None = None
    for tx in txs:
        ts = extract_block_time(tx)
        if ts is None:
            continue
        if newest_time is None or ts > newest_time:
            newest, newest_time = tx, ts
    if newest is None and txs:
        newest = txs[0]
    return WalletActivity(
        wallet=wallet,
        last_signature=(transaction_signature(newest) or None) if newest else None,
        last_activity=newest_time,
        transaction_count=len(txs),
    )


def is_wallet_inactive(last_activity: int, inactivity_period: int, now: int) -> bool:
    return now - last_activity >= inactivity_period


def time_remaining(last_activity: int, inactivity_period: int, now: int) -> int:
    """Seconds until the inactivity period elapses; 0 once it has."""
    return max(0, inactivity_period - (now - last_activity))


def format_time_remaining(last_activity: int, inactivity_period: int, now: int) -> str:
    remaining = time_remaining(last_activity, inactivity_period, now)
    if remaining <= 0:
        return READY_FOR_EXECUTION
    days, rest = divmod(remaining, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes = rest // 60
    return f"{days}d {hours}h {minutes}m remaining"


@dataclass(frozen=True)
class CapsuleStatus:
    owner: str
    is_active: bool
    executed: bool
    period_elapsed: bool
    recent_activity: bool
    can_execute: bool
    seconds_remaining: int
    time_remaining_text: str
    last_activity: int
    inactivity_period: int
    executed_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "is_active": self.is_active,
            "executed": self.executed,
            "period_elapsed": self.period_elapsed,
            "recent_activity": self.recent_activity,
            "can_execute": self.can_execute,
            "seconds_remaining": self.seconds_remaining,
            "time_remaining_text": self.time_remaining_text,
            "last_activity": self.last_activity,
            "inactivity_period": self.inactivity_period,
            "executed_at": self.executed_at,
        }


def capsule_status(snapshot: CapsuleSnapshot, activity: WalletActivity | None, now: int) -> CapsuleStatus:
    last = snapshot.last_activity_unix_seconds
    period = snapshot.inactivity_threshold_seconds
    elapsed = snapshot.can_execute(now)
    recent = (
        activity is not None
        and activity.last_activity is not None
        and not is_wallet_inactive(activity.last_activity, period, now)
    )
    return CapsuleStatus(
        owner=snapshot.owner_address,
        is_active=snapshot.is_active,
        executed=snapshot.executed_at_unix_seconds is not None,
        period_elapsed=elapsed,
        recent_activity=recent,
        can_execute=snapshot.is_active and elapsed and not recent,
        seconds_remaining=time_remaining(last, period, now),
        time_remaining_text=format_time_remaining(last, period, now),
        last_activity=last,
        inactivity_period=period,
        executed_at=snapshot.executed_at_unix_seconds,
    )
