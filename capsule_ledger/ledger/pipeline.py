"""
Ledger pipeline: run every source adapter, reconcile, persist.

Adapters run concurrently and share no mutable state. A failed source
contributes nothing to the pass; the view is unavailable only when every
source failed. run_periodic_recheck re-invokes refresh on a fixed interval;
each pass fully supersedes the previous one.
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Callable, Iterable, Sequence

from capsule_ledger.capsule_logging import bind_wallet, get_logger
from capsule_ledger.config.settings import Settings
from capsule_ledger.core.exceptions import SourceUnavailable
from capsule_ledger.ledger.cache import CapsuleCache
from capsule_ledger.ledger.classifier import ClassificationPolicy
from capsule_ledger.ledger.models import LedgerView, TransactionRecord
from capsule_ledger.ledger.reconciler import Reconciler
from capsule_ledger.ledger.sources import (
    IndexerApiAdapter,
    LedgerRpcAdapter,
    LocalCacheAdapter,
    SourceAdapter,
)
from capsule_ledger.onchain.indexer_client import IndexerClient
from capsule_ledger.onchain.rpc_client import SolanaRpcClient

logger = get_logger(__name__)


class LedgerPipeline:
    def __init__(self, adapters: Sequence[SourceAdapter], reconciler: Reconciler) -> None:
        self._adapters = list(adapters)
        self._reconciler = reconciler

    @property
    def adapters(self) -> list[SourceAdapter]:
        return list(self._adapters)

    async def _run_adapter(self, adapter: SourceAdapter, wallet: str) -> list[TransactionRecord] | None:
        """Records from one adapter, or None when the source failed for this pass."""
        try:
            return await adapter.fetch_for_account(wallet)
        except SourceUnavailable as e:
            logger.warning("source_unavailable", wallet_id=wallet, source=adapter.name, error=e.reason)
        except Exception as e:
            logger.exception("source_failed", wallet_id=wallet, source=adapter.name, error=str(e))
        return None

    async def refresh(self, wallet: str) -> LedgerView:
        outcomes = await asyncio.gather(*(self._run_adapter(a, wallet) for a in self._adapters))

        records: list[TransactionRecord] = []
        sources_ok: list[str] = []
        sources_failed: list[str] = []
        for adapter, outcome in zip(self._adapters, outcomes):
            if outcome is None:
                sources_failed.append(adapter.name)
            else:
                sources_ok.append(adapter.name)
                records.extend(outcome)

        result = self._reconciler.reconcile(wallet, records)
        view = LedgerView(
            wallet=wallet,
            result=result,
            sources_ok=tuple(sources_ok),
            sources_failed=tuple(sources_failed),
        )
        wallet_log = bind_wallet(wallet)
        if not view.available:
            wallet_log.error("ledger_unavailable", sources_failed=sources_failed)
            return view

        try:
            self._reconciler.persist(wallet, result)
        except sqlite3.Error as e:
            wallet_log.warning("cache_persist_failed", error=str(e))
        return view


async def run_periodic_recheck(
    pipeline: LedgerPipeline,
    wallets: Iterable[str],
    interval_sec: float,
    stop_event: asyncio.Event,
    *,
    on_view: Callable[[LedgerView], None] | None = None,
) -> dict[str, LedgerView]:
    """
    Refresh every wallet, wait interval_sec (or until stopped), repeat.

    Returns the last view per wallet once stop_event is set.
    """
    wallets = list(wallets)
    latest: dict[str, LedgerView] = {}
    logger.info("recheck_started", wallet_count=len(wallets), interval_sec=interval_sec)
    while not stop_event.is_set():
        for wallet in wallets:
            if stop_event.is_set():
                break
            try:
                view = await pipeline.refresh(wallet)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("recheck_refresh_error", wallet_id=wallet, error=str(e))
                continue
            latest[wallet] = view
            if on_view is not None:
                on_view(view)
        if stop_event.is_set():
            break
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_sec)
        except asyncio.TimeoutError:
            pass
    logger.info("recheck_stopped", wallet_count=len(wallets))
    return latest


def build_pipeline(
    settings: Settings,
    *,
    rpc: SolanaRpcClient,
    cache: CapsuleCache | None = None,
    indexer: IndexerClient | None = None,
) -> LedgerPipeline:
    """Wire the standard adapters from settings; the indexer is optional."""
    policy = ClassificationPolicy.from_setting(settings.unresolved_classification)
    adapters: list[SourceAdapter] = []
    if cache is not None:
        adapters.append(LocalCacheAdapter(cache))
    adapters.append(
        LedgerRpcAdapter(
            rpc,
            cache,
            settings.program_id,
            commitment=settings.commitment,
            discovery_limit=settings.signature_discovery_limit,
            max_concurrency=settings.max_concurrent_requests,
            policy=policy,
        )
    )
    if indexer is not None:
        adapters.append(IndexerApiAdapter(indexer, settings.program_id, policy=policy))
    return LedgerPipeline(adapters, Reconciler(cache))
