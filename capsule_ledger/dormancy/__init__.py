"""
Dormancy statistics, price feed and per-wallet capsule status.
"""

from capsule_ledger.dormancy.activity import (
    CapsuleStatus,
    WalletActivity,
    capsule_status,
    format_time_remaining,
    is_wallet_inactive,
    summarize_activity,
    time_remaining,
)
from capsule_ledger.dormancy.aggregator import (
    DormancyAggregator,
    DormancyStats,
    compute_dormancy_series,
    empty_stats,
    latest_activity_by_owner,
    scan_capsules,
)
from capsule_ledger.dormancy.price_feed import fetch_price_usd

__all__ = [
    "CapsuleStatus",
    "DormancyAggregator",
    "DormancyStats",
    "WalletActivity",
    "capsule_status",
    "compute_dormancy_series",
    "empty_stats",
    "fetch_price_usd",
    "format_time_remaining",
    "is_wallet_inactive",
    "latest_activity_by_owner",
    "scan_capsules",
    "summarize_activity",
    "time_remaining",
]
