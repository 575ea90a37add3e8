"""
Source adapters: local cache, ledger RPC, indexer API.

Each adapter turns one data source into TransactionRecords for a wallet.
Individual unreachable records never fail the fetch; a whole source that
cannot be reached raises SourceUnavailable, which the pipeline treats as an
empty contribution.
"""

from __future__ import annotations

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from typing import Any

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.core.exceptions import RecordDetailUnavailable, RpcError, SourceUnavailable
from capsule_ledger.ledger.cache import PURPOSES, CapsuleCache
from capsule_ledger.ledger.classifier import ClassificationPolicy, classify_evidence
from capsule_ledger.ledger.evidence import extract_evidence, normalize_block_time
from capsule_ledger.ledger.models import RecordSource, TransactionRecord, TxKind
from capsule_ledger.onchain.indexer_client import IndexerClient
from capsule_ledger.onchain.rpc_client import SolanaRpcClient

logger = get_logger(__name__)

DEFAULT_DISCOVERY_LIMIT = 25
DEFAULT_MAX_CONCURRENCY = 8


class SourceAdapter(ABC):
    """One data source producing TransactionRecords for a wallet."""

    source: RecordSource

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    async def fetch_for_account(self, wallet: str) -> list[TransactionRecord]:
        """Return this source's records for the wallet (possibly empty)."""
        ...


class LocalCacheAdapter(SourceAdapter):
    """Signatures persisted by earlier sessions; kind comes from the slot's purpose."""

    source = RecordSource.LOCAL_CACHE

    def __init__(self, cache: CapsuleCache) -> None:
        self._cache = cache

    async def fetch_for_account(self, wallet: str) -> list[TransactionRecord]:
        try:
            slots = self._cache.all_signatures(wallet)
        except sqlite3.Error as e:
            raise SourceUnavailable(self.name, str(e)) from e
        records = [
            TransactionRecord(signature=sig, kind=TxKind(purpose), source=self.source)
            for purpose in PURPOSES
            for sig in slots.get(purpose, [])
        ]
        logger.debug("cache_records_loaded", wallet_id=wallet, records=len(records))
        return records


class LedgerRpcAdapter(SourceAdapter):
    """
    Resolves cached and freshly discovered signatures through getTransaction.

    Cached signatures are always kept: a fetch failure yields an unclassified,
    timeless record; a null result marks the record missing (stale cache
    entry). Discovered signatures are kept only when their detail shows the
    tracked program.
    """

    source = RecordSource.LEDGER_RPC

    def __init__(
        self,
        rpc: SolanaRpcClient,
        cache: CapsuleCache | None,
        program_id: str,
        *,
        commitment: str | None = None,
        discovery_limit: int = DEFAULT_DISCOVERY_LIMIT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        policy: ClassificationPolicy | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._rpc = rpc
        self._cache = cache
        self._program_id = program_id
        self._commitment = commitment
        self._discovery_limit = discovery_limit
        self._max_concurrency = max_concurrency
        self._policy = policy

    def _cached_signatures(self, wallet: str) -> list[str]:
        if self._cache is None:
            return []
        try:
            slots = self._cache.all_signatures(wallet)
        except sqlite3.Error as e:
            logger.warning("cache_read_failed", wallet_id=wallet, source=self.name, error=str(e))
            return []
        out: list[str] = []
        for purpose in PURPOSES:
            for sig in slots.get(purpose, []):
                if sig not in out:
                    out.append(sig)
        return out

    async def _discover(self, wallet: str) -> dict[str, dict[str, Any]] | None:
        """Signature -> getSignaturesForAddress entry, or None when discovery failed."""
        try:
            infos = await self._rpc.get_signatures_for_address(wallet, limit=self._discovery_limit)
        except RpcError as e:
            logger.warning("signature_discovery_failed", wallet_id=wallet, error=str(e))
            return None
        return {info["signature"]: info for info in infos}

    async def _fetch_detail(self, semaphore: asyncio.Semaphore, signature: str) -> dict[str, Any] | None:
        async with semaphore:
            try:
                return await self._rpc.get_transaction(signature, commitment=self._commitment)
            except RpcError as e:
                raise RecordDetailUnavailable(signature, str(e)) from e

    def _record_from_detail(
        self,
        signature: str,
        raw: dict[str, Any],
        info: dict[str, Any] | None,
    ) -> tuple[TransactionRecord, bool]:
        evidence = extract_evidence(raw, self._program_id)
        block_time = evidence.block_time
        if block_time is None and info is not None:
            block_time = normalize_block_time(info.get("blockTime"))
        record = TransactionRecord(
            signature=signature,
            kind=classify_evidence(evidence, self._policy),
            source=self.source,
            block_time=block_time,
            succeeded=evidence.succeeded,
            slot=evidence.slot,
            fee=evidence.fee,
        )
        return record, evidence.involvement.involves_program

    async def fetch_for_account(self, wallet: str) -> list[TransactionRecord]:
        cached = self._cached_signatures(wallet)
        cached_set = set(cached)
        discovered = await self._discover(wallet)

        candidates = list(cached)
        for sig in discovered or {}:
            if sig not in cached_set:
                candidates.append(sig)
        if not candidates:
            if discovered is None:
                raise SourceUnavailable(self.name, "signature discovery failed and nothing is cached")
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)
        outcomes = await asyncio.gather(
            *(self._fetch_detail(semaphore, sig) for sig in candidates),
            return_exceptions=True,
        )

        records: list[TransactionRecord] = []
        failures = 0
        for sig, outcome in zip(candidates, outcomes):
            is_cached = sig in cached_set
            info = (discovered or {}).get(sig)
            if isinstance(outcome, RecordDetailUnavailable):
                failures += 1
                logger.warning(
                    "record_detail_unavailable",
                    wallet_id=wallet,
                    signature=sig,
                    cached=is_cached,
                    error=outcome.reason,
                )
                if is_cached:
                    records.append(TransactionRecord(signature=sig, kind=TxKind.UNCLASSIFIED, source=self.source))
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            if outcome is None:
                if is_cached:
                    logger.info("cached_signature_not_found", wallet_id=wallet, signature=sig)
                    records.append(
                        TransactionRecord(signature=sig, kind=TxKind.UNCLASSIFIED, source=self.source, missing=True)
                    )
                continue
            record, involves_program = self._record_from_detail(sig, outcome, info)
            if not is_cached and not involves_program:
                continue
            records.append(record)

        if discovered is None and failures == len(candidates):
            raise SourceUnavailable(self.name, f"all {failures} detail lookups failed")
        logger.debug(
            "rpc_records_loaded",
            wallet_id=wallet,
            candidates=len(candidates),
            records=len(records),
            failures=failures,
        )
        return records


class IndexerApiAdapter(SourceAdapter):
    """Paginated indexer history filtered to transactions touching the tracked program."""

    source = RecordSource.INDEXER_API

    def __init__(
        self,
        indexer: IndexerClient,
        program_id: str,
        *,
        policy: ClassificationPolicy | None = None,
    ) -> None:
        self._indexer = indexer
        self._program_id = program_id
        self._policy = policy

    async def fetch_for_account(self, wallet: str) -> list[TransactionRecord]:
        transactions = await self._indexer.fetch_transactions(wallet)
        records: list[TransactionRecord] = []
        seen: set[str] = set()
        for tx in transactions:
            evidence = extract_evidence(tx, self._program_id)
            if not evidence.signature or evidence.signature in seen:
                continue
            if not evidence.involvement.involves_program:
                continue
            seen.add(evidence.signature)
            records.append(
                TransactionRecord(
                    signature=evidence.signature,
                    kind=classify_evidence(evidence, self._policy),
                    source=self.source,
                    block_time=evidence.block_time,
                    succeeded=evidence.succeeded,
                    slot=evidence.slot,
                    fee=evidence.fee,
                )
            )
        logger.debug(
            "indexer_records_loaded",
            wallet_id=wallet,
            transactions=len(transactions),
            records=len(records),
        )
        return records
