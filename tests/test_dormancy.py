"""
Tests for the dormancy aggregator and the price feed.
"""

from __future__ import annotations

import asyncio
import functools
from datetime import datetime, timezone

import httpx
import pytest
from solders.pubkey import Pubkey

from capsule_ledger.config.settings import ONE_YEAR_SECONDS
from capsule_ledger.core.exceptions import ExternalFeedUnavailable
from capsule_ledger.dormancy.aggregator import (
    LAMPORTS_PER_SOL,
    DormancyAggregator,
    checkpoint_times,
    compute_dormancy_series,
    empty_stats,
    latest_activity_by_owner,
    shift_months,
)
from capsule_ledger.dormancy.price_feed import fetch_price_usd
from conftest import make_snapshot

NOW = int(datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc).timestamp())


def balances(mapping, default=0):
    async def lookup(owner):
        value = mapping.get(owner, default)
        if isinstance(value, Exception):
            raise value
        return value

    return lookup


def price(value):
    async def lookup():
        if isinstance(value, Exception):
            raise value
        return value

    return lookup


def test_latest_activity_keeps_max_per_owner():
    owner = Pubkey.new_unique()
    other = Pubkey.new_unique()
    snapshots = [
        make_snapshot(owner, last_activity=100),
        make_snapshot(owner, last_activity=300),
        make_snapshot(owner, last_activity=200),
        make_snapshot(other, last_activity=50),
    ]
    assert latest_activity_by_owner(snapshots) == {str(owner): 300, str(other): 50}


def test_dormancy_threshold_boundary():
    dormant = make_snapshot(last_activity=NOW - 31_536_001)
    active = make_snapshot(last_activity=NOW - 31_535_999)
    aggregator = DormancyAggregator(balances({}))
    stats = asyncio.run(aggregator.aggregate([dormant, active], NOW, ONE_YEAR_SECONDS))
    assert stats.dormant_count == 1


def test_exact_threshold_is_dormant():
    snapshot = make_snapshot(last_activity=NOW - ONE_YEAR_SECONDS)
    stats = asyncio.run(DormancyAggregator(balances({})).aggregate([snapshot], NOW, ONE_YEAR_SECONDS))
    assert stats.dormant_count == 1


def test_recreated_capsule_uses_freshest_activity():
    owner = Pubkey.new_unique()
    snapshots = [
        make_snapshot(owner, last_activity=NOW - 2 * ONE_YEAR_SECONDS),
        make_snapshot(owner, last_activity=NOW - 10),
    ]
    stats = asyncio.run(DormancyAggregator(balances({})).aggregate(snapshots, NOW, ONE_YEAR_SECONDS))
    assert stats.dormant_count == 0


def test_end_to_end_scenario():
    period = 86_400
    a = make_snapshot(last_activity=NOW, inactivity=period)
    b = make_snapshot(last_activity=NOW - period - 1)
    lookup = balances({b.owner_address: 3 * LAMPORTS_PER_SOL, a.owner_address: 7 * LAMPORTS_PER_SOL})
    aggregator = DormancyAggregator(lookup, price(150.0))
    stats = asyncio.run(aggregator.aggregate([a, b], NOW, period))

    assert stats.dormant_count == 1
    assert stats.estimated_assets_sol == 3.0
    assert stats.price_usd == 150.0
    assert stats.estimated_assets_usd == 450.0
    assert len(stats.series) == 6
    assert len(stats.labels) == 6
    assert stats.series[-1] == 1


def test_series_non_decreasing_for_aging_activity():
    snapshots = [make_snapshot(last_activity=NOW - days * 86_400) for days in (30, 200, 400, 500, 700, 900, 1200)]
    series, labels = compute_dormancy_series(latest_activity_by_owner(snapshots), NOW, ONE_YEAR_SECONDS)
    assert series == sorted(series)
    # Moving backward in time, each earlier checkpoint sees no more dormant wallets
    assert series[0] <= series[-1]
    assert series[-1] == 5
    assert labels == ["May", "Jul", "Sep", "Nov", "Jan", "Mar"]


def test_checkpoints_two_calendar_months_apart_clamped():
    points = checkpoint_times(NOW, 6, 2)
    assert points[-1] == datetime.fromtimestamp(NOW, tz=timezone.utc)
    assert [(p.year, p.month, p.day) for p in points] == [
        (2024, 5, 31),
        (2024, 7, 31),
        (2024, 9, 30),
        (2024, 11, 30),
        (2025, 1, 31),
        (2025, 3, 31),
    ]
    assert shift_months(datetime(2024, 3, 31, tzinfo=timezone.utc), -1).day == 29


def test_failed_balance_lookup_counts_as_zero():
    ok = make_snapshot(last_activity=0)
    bad = make_snapshot(last_activity=0)
    lookup = balances({ok.owner_address: 2 * LAMPORTS_PER_SOL, bad.owner_address: RuntimeError("rpc down")})
    stats = asyncio.run(DormancyAggregator(lookup).aggregate([ok, bad], NOW, ONE_YEAR_SECONDS))
    assert stats.dormant_count == 2
    assert stats.estimated_assets_sol == 2.0


def test_price_feed_failure_degrades_usd_only():
    snapshot = make_snapshot(last_activity=0)
    aggregator = DormancyAggregator(
        balances({snapshot.owner_address: LAMPORTS_PER_SOL}),
        price(ExternalFeedUnavailable("price_feed", "timeout")),
    )
    stats = asyncio.run(aggregator.aggregate([snapshot], NOW, ONE_YEAR_SECONDS))
    assert stats.estimated_assets_usd == 0
    assert stats.price_usd == 0
    assert stats.estimated_assets_sol == 1.0
    assert stats.dormant_count == 1


def test_balance_lookups_bounded():
    in_flight = 0
    peak = 0

    async def lookup(owner):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return 1

    snapshots = [make_snapshot(last_activity=0) for _ in range(20)]
    stats = asyncio.run(DormancyAggregator(lookup, max_concurrency=4).aggregate(snapshots, NOW, ONE_YEAR_SECONDS))
    assert stats.dormant_count == 20
    assert peak <= 4


def test_empty_stats_shape():
    stats = empty_stats(NOW)
    assert stats.series == [0] * 6
    assert len(stats.labels) == 6
    assert stats.dormant_count == 0
    assert stats.estimated_assets_usd == 0


def test_fetch_price_usd():
    def handle(request: httpx.Request) -> httpx.Response:
        assert request.url.params["ids"] == "solana"
        assert request.url.params["vs_currencies"] == "usd"
        return httpx.Response(200, json={"solana": {"usd": 142.5}})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handle)) as client:
            return await fetch_price_usd(client, "https://price.test/simple/price", "solana")

    assert asyncio.run(run()) == 142.5


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(200, json={"solana": {}}),
        httpx.Response(200, json={"other": {"usd": 1}}),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"solana": 5}),
        httpx.Response(200, json={"solana": {"usd": "142"}}),
        httpx.Response(200, content=b'{"solana": {"usd": NaN}}'),
        httpx.Response(200, content=b'{"solana": {"usd": Infinity}}'),
        httpx.Response(200, json={"solana": {"usd": -1}}),
    ],
)
def test_fetch_price_usd_failures_raise(response):
    async def run():
        transport = httpx.MockTransport(lambda request: response)
        async with httpx.AsyncClient(transport=transport) as client:
            return await fetch_price_usd(client, "https://price.test/simple/price")

    with pytest.raises(ExternalFeedUnavailable):
        asyncio.run(run())


@pytest.mark.parametrize(
    "body",
    [
        b'{"solana": 5}',
        b'{"solana": {"usd": NaN}}',
        b'["solana"]',
    ],
)
def test_malformed_price_body_keeps_counts_and_native_total(body):
    snapshot = make_snapshot(last_activity=0)

    async def run():
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
        async with httpx.AsyncClient(transport=transport) as client:
            aggregator = DormancyAggregator(
                balances({snapshot.owner_address: 2 * LAMPORTS_PER_SOL}),
                functools.partial(fetch_price_usd, client, "https://price.test/simple/price"),
            )
            return await aggregator.aggregate([snapshot], NOW, ONE_YEAR_SECONDS)

    stats = asyncio.run(run())
    assert stats.dormant_count == 1
    assert stats.estimated_assets_sol == 2.0
    assert stats.estimated_assets_usd == 0
    assert stats.price_usd == 0


@pytest.mark.parametrize("result", [RuntimeError("feed exploded"), float("nan"), float("inf"), -3.0])
def test_unusable_price_lookup_degrades_usd_only(result):
    snapshot = make_snapshot(last_activity=0)
    aggregator = DormancyAggregator(balances({snapshot.owner_address: LAMPORTS_PER_SOL}), price(result))
    stats = asyncio.run(aggregator.aggregate([snapshot], NOW, ONE_YEAR_SECONDS))
    assert stats.dormant_count == 1
    assert stats.estimated_assets_sol == 1.0
    assert stats.estimated_assets_usd == 0
    assert stats.price_usd == 0
