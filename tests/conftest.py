"""
Pytest fixtures for Capsule Ledger tests.

HTTP is faked with httpx.MockTransport; nothing touches the network. Async code
is driven with asyncio.run from plain test functions.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
from solders.pubkey import Pubkey

from capsule_ledger.config.settings import ONE_YEAR_SECONDS, Settings
from capsule_ledger.ledger.cache import CapsuleCache, MemoryKeyValueStore
from capsule_ledger.onchain.account_decoder import CapsuleSnapshot
from capsule_ledger.onchain.rpc_client import SolanaRpcClient

# Valid Solana pubkeys (base58, 32 bytes)
VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
VALID_WALLET_2 = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"
PROGRAM_ID = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
SIG_A = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
SIG_B = "3nGq2yczqCpm8bF2dyvdPtXpnFLJ1oGWkDfD6neLbRay8SjNqYNhWQBQ2KXWrU3Nm1dSHAZzJTQZKD6w7jCcZT7N"
SIG_C = "4pZcJgmvbY9Bcd3hDszJcpeVsfbqEXsMqc4Uq9nhWb1bJXvX2ekkuGjLEt7eCiJ7Ec3tzkX4YtCk7dG1Kyu8Qzq9"

RpcHandler = Callable[[list[Any]], Any]


def make_rpc_transport(handlers: dict[str, Any], calls: list[dict[str, Any]] | None = None) -> httpx.MockTransport:
    """
    JSON-RPC MockTransport. Each handler is either a fixed result, a callable
    taking params and returning a result, or an httpx.Response returned as is.
    """

    def handle(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if calls is not None:
            calls.append(body)
        method = body["method"]
        if method not in handlers:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "Method not found"}})
        handler = handlers[method]
        result = handler(body["params"]) if callable(handler) else handler
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return httpx.MockTransport(handle)


def make_rpc_client(handlers: dict[str, Any], calls: list[dict[str, Any]] | None = None, **kwargs: Any) -> SolanaRpcClient:
    client = httpx.AsyncClient(transport=make_rpc_transport(handlers, calls))
    kwargs.setdefault("retry_delay_sec", 0.0)
    return SolanaRpcClient("https://rpc.test", client=client, **kwargs)


def make_snapshot(
    owner: Pubkey | str | None = None,
    *,
    inactivity: int = ONE_YEAR_SECONDS,
    last_activity: int = 1_700_000_000,
    payload: bytes = b"send everything to my sister",
    is_active: bool = True,
    executed_at: int | None = None,
) -> CapsuleSnapshot:
    if owner is None:
        owner = Pubkey.new_unique()
    elif isinstance(owner, str):
        owner = Pubkey.from_string(owner)
    return CapsuleSnapshot(
        owner=owner,
        inactivity_threshold_seconds=inactivity,
        last_activity_unix_seconds=last_activity,
        payload=payload,
        is_active=is_active,
        executed_at_unix_seconds=executed_at,
    )


def rpc_transaction(
    *,
    block_time: int | None = 1_700_000_000,
    logs: list[str] | None = None,
    account_keys: list[str] | None = None,
    pre_balances: list[int] | None = None,
    post_balances: list[int] | None = None,
    err: Any = None,
    signature: str = SIG_A,
) -> dict[str, Any]:
    """A getTransaction (json encoding) result."""
    keys = account_keys if account_keys is not None else [VALID_WALLET, PROGRAM_ID]
    return {
        "slot": 250_000_000,
        "blockTime": block_time,
        "meta": {
            "err": err,
            "fee": 5000,
            "logMessages": logs if logs is not None else [],
            "preBalances": pre_balances if pre_balances is not None else [10_000_000, 1],
            "postBalances": post_balances if post_balances is not None else [9_995_000, 1],
        },
        "transaction": {
            "signatures": [signature],
            "message": {"accountKeys": keys, "instructions": []},
        },
    }


@pytest.fixture
def memory_cache() -> CapsuleCache:
    return CapsuleCache(MemoryKeyValueStore())


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        network="devnet",
        rpc_url="https://rpc.test",
        helius_api_key="test-key",
        indexer_base_url="https://indexer.test/v0",
        program_id=PROGRAM_ID,
        commitment="confirmed",
        request_timeout_sec=5.0,
        max_retries=1,
        max_concurrent_requests=4,
        indexer_page_size=100,
        indexer_max_pages=2,
        signature_discovery_limit=25,
        dormancy_threshold_sec=ONE_YEAR_SECONDS,
        dormancy_series_points=6,
        price_feed_url="https://price.test/simple/price",
        price_asset_id="solana",
        cache_db_path=tmp_path / "cache.db",
        recheck_interval_sec=300.0,
        unresolved_classification="unclassified",
    )


@pytest.fixture
def client_for():
    """
    FastAPI TestClient factory. Routes get the given services through the
    dependency override; the lifespan (and its real services) never runs.
    """
    from fastapi.testclient import TestClient

    from capsule_ledger.api_server.server import app, get_services

    def make(services):
        app.dependency_overrides[get_services] = lambda: services
        return TestClient(app)

    yield make
    app.dependency_overrides.clear()
