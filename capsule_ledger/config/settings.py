"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files (via config.env).
- Provide defaults for optional settings.
- Expose one immutable Settings object for the RPC client, indexer client,
  ledger pipeline, dormancy aggregator and API server.
"""

from __future__ import annotations

import functools
import os
from dataclasses import dataclass
from pathlib import Path

from capsule_ledger.config.env import (
    COINGECKO_SIMPLE_PRICE_URL,
    _env,
    _env_float,
    _env_int,
    get_capsule_program_id,
    get_commitment,
    get_helius_api_key,
    get_indexer_base_url,
    get_solana_network,
    get_solana_rpc_url,
    load_capsule_env,
)

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60
DEFAULT_SERIES_POINTS = 6
DEFAULT_MAX_CONCURRENT_REQUESTS = 8


@dataclass(frozen=True)
class Settings:
    """Resolved configuration; see SOLANA_*, HELIUS_*, CAPSULE_* and friends in the environment."""

    network: str
    rpc_url: str
    helius_api_key: str
    indexer_base_url: str
    program_id: str
    commitment: str
    request_timeout_sec: float
    max_retries: int
    max_concurrent_requests: int
    indexer_page_size: int
    indexer_max_pages: int
    signature_discovery_limit: int
    dormancy_threshold_sec: int
    dormancy_series_points: int
    price_feed_url: str
    price_asset_id: str
    cache_db_path: Path
    recheck_interval_sec: float
    unresolved_classification: str
    recheck_wallets: tuple[str, ...] = ()

    @property
    def indexer_enabled(self) -> bool:
        return bool(self.helius_api_key)


def _load_settings() -> Settings:
    load_capsule_env()
    unresolved = _env("UNRESOLVED_CLASSIFICATION", "unclassified").lower()
    if unresolved not in ("unclassified", "creation"):
        unresolved = "unclassified"
    return Settings(
        network=get_solana_network(),
        rpc_url=get_solana_rpc_url(),
        helius_api_key=get_helius_api_key(),
        indexer_base_url=get_indexer_base_url(),
        program_id=get_capsule_program_id(),
        commitment=get_commitment(),
        request_timeout_sec=_env_float("REQUEST_TIMEOUT_SEC", 30.0),
        max_retries=max(1, _env_int("RPC_MAX_RETRIES", 3)),
        max_concurrent_requests=max(1, _env_int("MAX_CONCURRENT_REQUESTS", DEFAULT_MAX_CONCURRENT_REQUESTS)),
        indexer_page_size=min(100, max(1, _env_int("INDEXER_PAGE_SIZE", 100))),
        indexer_max_pages=max(1, _env_int("INDEXER_MAX_PAGES", 5)),
        signature_discovery_limit=min(1000, max(1, _env_int("SIGNATURE_DISCOVERY_LIMIT", 25))),
        dormancy_threshold_sec=_env_int("DORMANCY_THRESHOLD_SEC", ONE_YEAR_SECONDS),
        dormancy_series_points=max(1, _env_int("DORMANCY_SERIES_POINTS", DEFAULT_SERIES_POINTS)),
        price_feed_url=_env("PRICE_FEED_URL", COINGECKO_SIMPLE_PRICE_URL),
        price_asset_id=_env("PRICE_ASSET_ID", "solana"),
        cache_db_path=Path(os.getenv("CACHE_DB_PATH", "capsule_cache.db").strip() or "capsule_cache.db"),
        recheck_interval_sec=_env_float("RECHECK_INTERVAL_SEC", 300.0),
        unresolved_classification=unresolved,
        recheck_wallets=tuple(w.strip() for w in _env("RECHECK_WALLETS").split(",") if w.strip()),
    )


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the current application settings (resolved once per process)."""
    return _load_settings()


def reset_settings_cache() -> None:
    """Drop cached settings so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
