"""
Wiring of clients, cache, pipeline and aggregator behind the HTTP API.

One shared httpx.AsyncClient serves the ledger RPC, the indexer and the price
feed. Built once in the app lifespan; routes reach it through a dependency so
tests can substitute their own.
"""

from __future__ import annotations

import functools
import time
from dataclasses import dataclass, field

import httpx

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.config.env import mask_api_key
from capsule_ledger.config.settings import Settings
from capsule_ledger.core.exceptions import SourceUnavailable
from capsule_ledger.dormancy.activity import CapsuleStatus, WalletActivity, capsule_status, summarize_activity
from capsule_ledger.dormancy.aggregator import DormancyAggregator, DormancyStats, scan_capsules
from capsule_ledger.dormancy.price_feed import fetch_price_usd
from capsule_ledger.ledger.cache import (
    PURPOSE_CREATION,
    CapsuleCache,
    ExecutedCapsuleSummary,
    IntentRecord,
    SQLiteKeyValueStore,
)
from capsule_ledger.ledger.models import LedgerView
from capsule_ledger.ledger.pipeline import LedgerPipeline, build_pipeline
from capsule_ledger.onchain.indexer_client import IndexerClient
from capsule_ledger.onchain.rpc_client import SolanaRpcClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class CapsuleView:
    """The owner's freshest capsule with its status and cached history."""

    address: str
    status: CapsuleStatus
    payload_length: int
    activity: WalletActivity | None = None
    intents: list[IntentRecord] = field(default_factory=list)
    executed_capsules: list[ExecutedCapsuleSummary] = field(default_factory=list)


@dataclass
class CapsuleServices:
    settings: Settings
    http: httpx.AsyncClient
    rpc: SolanaRpcClient
    cache: CapsuleCache
    pipeline: LedgerPipeline
    aggregator: DormancyAggregator
    indexer: IndexerClient | None = None

    async def aclose(self) -> None:
        await self.rpc.aclose()
        if self.indexer is not None:
            await self.indexer.aclose()
        await self.http.aclose()

    async def dormancy_stats(self, now: int | None = None) -> DormancyStats:
        """Fleet-wide stats; RpcError from the program scan propagates to the caller."""
        now = int(time.time()) if now is None else now
        capsules = await scan_capsules(self.rpc, self.settings.program_id)
        return await self.aggregator.aggregate(
            [snapshot for _, snapshot in capsules],
            now,
            self.settings.dormancy_threshold_sec,
            self.settings.dormancy_series_points,
        )

    async def ledger_view(self, wallet: str) -> LedgerView:
        return await self.pipeline.refresh(wallet)

    async def wallet_activity(self, wallet: str) -> WalletActivity | None:
        if self.indexer is None:
            return None
        try:
            transactions = await self.indexer.fetch_transactions(wallet)
        except SourceUnavailable as e:
            logger.warning("source_unavailable", wallet_id=wallet, source=e.source, error=e.reason)
            return None
        return summarize_activity(wallet, transactions)

    def record_capsule_intent(
        self,
        owner: str,
        text: str,
        *,
        creation_signature: str | None = None,
        created_at: int | None = None,
    ) -> IntentRecord:
        """Remember the intent text (and creation signature) submitted with a new capsule."""
        record = IntentRecord(text=text, created_at=int(time.time()) if created_at is None else created_at)
        self.cache.record_intent(owner, record.text, record.created_at)
        if creation_signature:
            self.cache.set_latest_signature(owner, PURPOSE_CREATION, creation_signature)
        logger.info(
            "capsule_intent_recorded",
            wallet_id=owner,
            signature=creation_signature,
            created_at=record.created_at,
        )
        return record

    async def capsule_view(self, owner: str, now: int | None = None) -> CapsuleView | None:
        """None when the owner has no decodable capsule."""
        now = int(time.time()) if now is None else now
        capsules = [
            (address, snapshot)
            for address, snapshot in await scan_capsules(self.rpc, self.settings.program_id, owner)
            if snapshot.owner_address == owner
        ]
        if not capsules:
            return None
        address, snapshot = max(capsules, key=lambda pair: pair[1].last_activity_unix_seconds)
        activity = await self.wallet_activity(owner)
        return CapsuleView(
            address=address,
            status=capsule_status(snapshot, activity, now),
            payload_length=len(snapshot.payload),
            activity=activity,
            intents=self.cache.intents(owner),
            executed_capsules=self.cache.executed_capsules(owner),
        )


def build_services(settings: Settings) -> CapsuleServices:
    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_sec))
    rpc = SolanaRpcClient(
        settings.rpc_url,
        client=http,
        commitment=settings.commitment,
        max_retries=settings.max_retries,
    )
    indexer = None
    if settings.indexer_enabled:
        indexer = IndexerClient(
            settings.indexer_base_url,
            settings.helius_api_key,
            client=http,
            page_size=settings.indexer_page_size,
            max_pages=settings.indexer_max_pages,
        )
    cache = CapsuleCache(SQLiteKeyValueStore(settings.cache_db_path))
    pipeline = build_pipeline(settings, rpc=rpc, cache=cache, indexer=indexer)
    aggregator = DormancyAggregator(
        rpc.get_balance,
        functools.partial(fetch_price_usd, http, settings.price_feed_url, settings.price_asset_id),
        max_concurrency=settings.max_concurrent_requests,
    )
    logger.info(
        "services_built",
        network=settings.network,
        rpc_url=mask_api_key(settings.rpc_url),
        indexer_enabled=indexer is not None,
        program_id=settings.program_id or None,
        cache_db_path=str(settings.cache_db_path),
    )
    return CapsuleServices(
        settings=settings,
        http=http,
        rpc=rpc,
        cache=cache,
        pipeline=pipeline,
        aggregator=aggregator,
        indexer=indexer,
    )
