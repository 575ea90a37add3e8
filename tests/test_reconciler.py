"""
Tests for the reconciler: dedup, winner selection, ordering, cursors, persistence.
"""

from __future__ import annotations

import itertools

from capsule_ledger.ledger.models import RecordSource, TransactionRecord, TxKind
from capsule_ledger.ledger.reconciler import Reconciler, reconcile, resolve_group
from conftest import SIG_A, SIG_B, SIG_C, VALID_WALLET

CACHE = RecordSource.LOCAL_CACHE
RPC = RecordSource.LEDGER_RPC
INDEXER = RecordSource.INDEXER_API


def rec(sig, kind, source, block_time=None, **kwargs):
    return TransactionRecord(signature=sig, kind=kind, source=source, block_time=block_time, **kwargs)


def test_empty_input_is_empty_ledger():
    result = reconcile(VALID_WALLET, [])
    assert len(result.ledger) == 0
    assert result.cursors.creation_signature is None
    assert result.cursors.execution_signature is None
    assert result.stale_signatures == frozenset()


def test_tie_break_execution_with_time_beats_cached_creation():
    cached = rec(SIG_A, TxKind.CREATION, CACHE)
    indexed = rec(SIG_A, TxKind.EXECUTION, INDEXER, 1_700_000_000)
    for records in ([cached, indexed], [indexed, cached]):
        result = reconcile(VALID_WALLET, records)
        assert len(result.ledger) == 1
        winner = result.ledger.entries[0]
        assert winner.kind == TxKind.EXECUTION
        assert winner.block_time == 1_700_000_000


def test_larger_known_time_beats_unknown_time():
    winner = resolve_group([rec(SIG_A, TxKind.CREATION, INDEXER), rec(SIG_A, TxKind.CREATION, CACHE, 5)])
    assert winner.source == CACHE
    assert winner.block_time == 5


def test_richer_source_wins_exact_tie():
    winner = resolve_group(
        [rec(SIG_A, TxKind.CREATION, CACHE, 10), rec(SIG_A, TxKind.CREATION, RPC, 10), rec(SIG_A, TxKind.CREATION, INDEXER, 10)]
    )
    assert winner.source == INDEXER


def test_unclassified_winner_inherits_kind_and_time():
    winner = resolve_group([rec(SIG_A, TxKind.UNCLASSIFIED, RPC, 100), rec(SIG_A, TxKind.CREATION, CACHE)])
    assert winner.kind == TxKind.CREATION
    assert winner.block_time == 100
    assert winner.source == RPC

    timeless = resolve_group([rec(SIG_B, TxKind.EXECUTION, CACHE), rec(SIG_B, TxKind.UNCLASSIFIED, RPC, 50)])
    assert timeless.kind == TxKind.EXECUTION
    assert timeless.block_time == 50


def test_ordering_newest_first_execution_on_ties_timeless_last():
    records = [
        rec(SIG_C, TxKind.CREATION, CACHE),
        rec(SIG_A, TxKind.CREATION, RPC, 100),
        rec(SIG_B, TxKind.EXECUTION, RPC, 100),
        rec("sigNewest", TxKind.UNCLASSIFIED, INDEXER, 200),
    ]
    ledger = reconcile(VALID_WALLET, records).ledger
    assert ledger.signatures == ["sigNewest", SIG_B, SIG_A, SIG_C]


def test_no_duplicate_signatures():
    records = [rec(SIG_A, TxKind.CREATION, s, 1) for s in (CACHE, RPC, INDEXER)] + [rec(SIG_B, TxKind.EXECUTION, RPC, 2)]
    ledger = reconcile(VALID_WALLET, records).ledger
    assert sorted(ledger.signatures) == sorted({SIG_A, SIG_B})


def test_reconcile_idempotent_under_permutation():
    records = [
        rec(SIG_A, TxKind.CREATION, CACHE),
        rec(SIG_A, TxKind.UNCLASSIFIED, RPC, 100, fee=5000),
        rec(SIG_A, TxKind.CREATION, INDEXER, 100, slot=7),
        rec(SIG_B, TxKind.EXECUTION, CACHE),
        rec(SIG_B, TxKind.EXECUTION, RPC, 300, succeeded=False),
        rec(SIG_C, TxKind.UNCLASSIFIED, RPC),
    ]
    expected = reconcile(VALID_WALLET, records)
    for perm in itertools.permutations(records):
        again = reconcile(VALID_WALLET, list(perm))
        assert again.ledger == expected.ledger
        assert again.cursors == expected.cursors
    twice = reconcile(VALID_WALLET, list(records) + list(records))
    assert twice.ledger == expected.ledger


def test_cursors_most_recent_per_kind():
    records = [
        rec(SIG_A, TxKind.CREATION, RPC, 100),
        rec(SIG_B, TxKind.CREATION, RPC, 200),
        rec(SIG_C, TxKind.EXECUTION, RPC, 150),
    ]
    cursors = reconcile(VALID_WALLET, records).cursors
    assert cursors.creation_signature == SIG_B
    assert cursors.execution_signature == SIG_C
    assert cursors.execution_block_time == 150


def test_missing_signature_only_in_cache_is_stale():
    records = [rec(SIG_A, TxKind.CREATION, CACHE), rec(SIG_A, TxKind.UNCLASSIFIED, RPC, missing=True)]
    result = reconcile(VALID_WALLET, records)
    assert len(result.ledger) == 0
    assert result.stale_signatures == frozenset({SIG_A})


def test_missing_signature_seen_by_indexer_is_kept():
    records = [
        rec(SIG_A, TxKind.CREATION, CACHE),
        rec(SIG_A, TxKind.UNCLASSIFIED, RPC, missing=True),
        rec(SIG_A, TxKind.CREATION, INDEXER, 10),
    ]
    result = reconcile(VALID_WALLET, records)
    assert result.ledger.signatures == [SIG_A]
    assert result.ledger.entries[0].source == INDEXER
    assert result.stale_signatures == frozenset()


def test_persist_writes_cursors_history_and_forgets_stale(memory_cache):
    memory_cache.set_latest_signature(VALID_WALLET, "creation", "staleSig")
    memory_cache.record_intent(VALID_WALLET, "give it all away", 1_699_000_000)
    records = [
        rec("staleSig", TxKind.CREATION, CACHE),
        rec("staleSig", TxKind.UNCLASSIFIED, RPC, missing=True),
        rec(SIG_A, TxKind.CREATION, RPC, 100),
        rec(SIG_B, TxKind.EXECUTION, INDEXER, 200),
    ]
    reconciler = Reconciler(memory_cache)
    result = reconciler.reconcile(VALID_WALLET, records)
    reconciler.persist(VALID_WALLET, result)

    assert memory_cache.latest_signature(VALID_WALLET, "creation") == SIG_A
    assert memory_cache.latest_signature(VALID_WALLET, "execution") == SIG_B
    assert "staleSig" not in memory_cache.signatures(VALID_WALLET, "creation")
    executed = memory_cache.executed_capsules(VALID_WALLET)
    assert len(executed) == 1
    assert executed[0].execution_tx == SIG_B
    assert executed[0].executed_at == 200
    assert executed[0].intent == "give it all away"
    assert executed[0].creation_tx == SIG_A

    # Same pass again: nothing new is recorded
    reconciler.persist(VALID_WALLET, reconciler.reconcile(VALID_WALLET, records))
    assert len(memory_cache.executed_capsules(VALID_WALLET)) == 1


def test_persist_without_cache_is_noop():
    result = reconcile(VALID_WALLET, [rec(SIG_A, TxKind.CREATION, RPC, 1)])
    Reconciler().persist(VALID_WALLET, result)
