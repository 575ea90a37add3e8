"""
Reconciler: merges records from every source into one ledger per wallet.

All merge and priority rules live here:

Winner per signature, in order:
    1. Execution beats Creation/Unclassified.
    2. A known, larger block time beats an unknown or smaller one.
    3. IndexerAPI beats LedgerRPC beats LocalCache.
Remaining fields break exact ties so the result never depends on input order.

The winner then inherits what its group knows: an Unclassified winner takes
the strongest kind seen for the signature, a timeless winner the largest
known block time.

Ledger order: block time descending (unknown last), Execution > Creation >
Unclassified on equal times, signature last.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.ledger.cache import PURPOSE_CREATION, PURPOSE_EXECUTION, CapsuleCache, ExecutedCapsuleSummary
from capsule_ledger.ledger.models import (
    KIND_RANK,
    SOURCE_PRIORITY,
    Ledger,
    LedgerCursors,
    ReconcileResult,
    RecordSource,
    TransactionRecord,
    TxKind,
)

logger = get_logger(__name__)


def _winner_key(record: TransactionRecord) -> tuple:
    return (
        record.kind == TxKind.EXECUTION,
        record.block_time is not None,
        record.block_time if record.block_time is not None else 0,
        SOURCE_PRIORITY[record.source],
        KIND_RANK[record.kind],
        record.succeeded,
        record.slot if record.slot is not None else -1,
        record.fee if record.fee is not None else -1,
    )


def _ledger_order_key(record: TransactionRecord) -> tuple:
    return (
        record.block_time is None,
        -(record.block_time or 0),
        -KIND_RANK[record.kind],
        record.signature,
    )


def _has_data(record: TransactionRecord) -> bool:
    """Seen by a live source (not just remembered by the cache, not reported missing)."""
    return not record.missing and record.source != RecordSource.LOCAL_CACHE


def resolve_group(group: list[TransactionRecord]) -> TransactionRecord | None:
    """
    Pick the winner for one signature; None when the group proves the
    signature stale (the ledger reported it missing and no live source saw it).
    """
    if any(r.missing for r in group):
        if not any(_has_data(r) for r in group):
            return None
        group = [r for r in group if not r.missing]

    winner = max(group, key=_winner_key)

    if winner.kind == TxKind.UNCLASSIFIED:
        strongest = max((r.kind for r in group), key=KIND_RANK.__getitem__)
        if strongest != TxKind.UNCLASSIFIED:
            winner = replace(winner, kind=strongest)
    if winner.block_time is None:
        times = [r.block_time for r in group if r.block_time is not None]
        if times:
            winner = replace(winner, block_time=max(times))
    return winner


def compute_cursors(ledger: Ledger) -> LedgerCursors:
    creation = ledger.latest(TxKind.CREATION)
    execution = ledger.latest(TxKind.EXECUTION)
    return LedgerCursors(
        creation_signature=creation.signature if creation else None,
        execution_signature=execution.signature if execution else None,
        execution_block_time=execution.block_time if execution else None,
    )


def reconcile(wallet: str, records: Iterable[TransactionRecord]) -> ReconcileResult:
    """Merge records from all sources; an empty input is a valid empty ledger."""
    groups: dict[str, list[TransactionRecord]] = {}
    for record in records:
        if not record.signature:
            continue
        groups.setdefault(record.signature, []).append(record)

    winners: list[TransactionRecord] = []
    stale: set[str] = set()
    for signature, group in groups.items():
        winner = resolve_group(group)
        if winner is None:
            stale.add(signature)
        else:
            winners.append(winner)

    winners.sort(key=_ledger_order_key)
    ledger = Ledger(wallet=wallet, entries=tuple(winners))
    return ReconcileResult(ledger=ledger, cursors=compute_cursors(ledger), stale_signatures=frozenset(stale))


class Reconciler:
    """
    Reconciles records and persists the resulting cursors to the durable cache.

    Without a cache it only reconciles; persist() becomes a no-op.
    """

    def __init__(self, cache: CapsuleCache | None = None) -> None:
        self._cache = cache

    def reconcile(self, wallet: str, records: Iterable[TransactionRecord]) -> ReconcileResult:
        result = reconcile(wallet, records)
        logger.info(
            "ledger_reconciled",
            wallet_id=wallet,
            entries=len(result.ledger),
            stale=len(result.stale_signatures),
            creation_signature=result.cursors.creation_signature,
            execution_signature=result.cursors.execution_signature,
        )
        return result

    def persist(self, wallet: str, result: ReconcileResult) -> None:
        cache = self._cache
        if cache is None:
            return
        for signature in sorted(result.stale_signatures):
            cache.forget_signature(wallet, signature)

        for entry in result.ledger:
            if entry.kind in (TxKind.CREATION, TxKind.EXECUTION):
                cache.add_signature(wallet, entry.kind.value, entry.signature)

        cursors = result.cursors
        if cursors.creation_signature:
            cache.set_latest_signature(wallet, PURPOSE_CREATION, cursors.creation_signature)
        if cursors.execution_signature:
            previous = cache.latest_signature(wallet, PURPOSE_EXECUTION)
            cache.set_latest_signature(wallet, PURPOSE_EXECUTION, cursors.execution_signature)
            if previous != cursors.execution_signature:
                intents = cache.intents(wallet)
                added = cache.add_executed_capsule(
                    wallet,
                    ExecutedCapsuleSummary(
                        execution_tx=cursors.execution_signature,
                        executed_at=cursors.execution_block_time,
                        intent=intents[0].text if intents else None,
                        creation_tx=cursors.creation_signature,
                    ),
                )
                if added:
                    logger.info(
                        "executed_capsule_recorded",
                        wallet_id=wallet,
                        signature=cursors.execution_signature,
                    )
