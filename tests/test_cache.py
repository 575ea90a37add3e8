"""
Tests for the durable cache: key-value stores and the wallet x purpose schema.
"""

from __future__ import annotations

import pytest

from capsule_ledger.ledger.cache import (
    CapsuleCache,
    ExecutedCapsuleSummary,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
)
from conftest import SIG_A, SIG_B, SIG_C, VALID_WALLET, VALID_WALLET_2


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryKeyValueStore()
    return SQLiteKeyValueStore(tmp_path / "kv.db")


def test_store_get_set_delete(store):
    assert store.get("a") is None
    store.set("a", "1")
    store.set("a", "2")
    assert store.get("a") == "2"
    store.delete("a")
    store.delete("missing")
    assert store.get("a") is None


def test_store_prefix_keys_literal_match(store):
    store.set("capsule:w:creation_tx", "x")
    store.set("capsule:w:creation_tx:abc", "abc")
    store.set("capsule:wX:creation_tx", "y")
    store.set("capsule%w", "z")
    assert store.keys("capsule:w:") == ["capsule:w:creation_tx", "capsule:w:creation_tx:abc"]
    assert len(store.keys()) == 4


def test_sqlite_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "kv.db"
    SQLiteKeyValueStore(path).set("k", "v")
    assert SQLiteKeyValueStore(path).get("k") == "v"


def test_signatures_latest_first_and_additive(memory_cache):
    memory_cache.add_signature(VALID_WALLET, "creation", SIG_A)
    memory_cache.set_latest_signature(VALID_WALLET, "creation", SIG_B)
    memory_cache.add_signature(VALID_WALLET, "creation", SIG_A)
    sigs = memory_cache.signatures(VALID_WALLET, "creation")
    assert sigs[0] == SIG_B
    assert sorted(sigs) == sorted([SIG_A, SIG_B])
    assert memory_cache.signatures(VALID_WALLET, "execution") == []
    assert memory_cache.signatures(VALID_WALLET_2, "creation") == []


def test_latest_signature_overwrite_keeps_history(memory_cache):
    memory_cache.set_latest_signature(VALID_WALLET, "execution", SIG_A)
    memory_cache.set_latest_signature(VALID_WALLET, "execution", SIG_B)
    assert memory_cache.latest_signature(VALID_WALLET, "execution") == SIG_B
    assert set(memory_cache.signatures(VALID_WALLET, "execution")) == {SIG_A, SIG_B}


def test_forget_signature_clears_every_slot(memory_cache):
    memory_cache.set_latest_signature(VALID_WALLET, "creation", SIG_A)
    memory_cache.add_signature(VALID_WALLET, "execution", SIG_A)
    memory_cache.add_signature(VALID_WALLET, "execution", SIG_C)
    memory_cache.forget_signature(VALID_WALLET, SIG_A)
    assert memory_cache.latest_signature(VALID_WALLET, "creation") is None
    assert memory_cache.signatures(VALID_WALLET, "creation") == []
    assert memory_cache.signatures(VALID_WALLET, "execution") == [SIG_C]


def test_unknown_purpose_rejected(memory_cache):
    with pytest.raises(ValueError):
        memory_cache.latest_signature(VALID_WALLET, "refund")


def test_intents_newest_first(memory_cache):
    memory_cache.record_intent(VALID_WALLET, "older", 1_700_000_000)
    memory_cache.record_intent(VALID_WALLET, "newer", 1_700_000_500)
    intents = memory_cache.intents(VALID_WALLET)
    assert [i.text for i in intents] == ["newer", "older"]
    assert intents[0].created_at == 1_700_000_500


def test_executed_capsules_deduplicated(memory_cache):
    summary = ExecutedCapsuleSummary(execution_tx=SIG_A, executed_at=1_700_000_000, intent="x")
    assert memory_cache.add_executed_capsule(VALID_WALLET, summary) is True
    assert memory_cache.add_executed_capsule(VALID_WALLET, summary) is False
    assert memory_cache.executed_capsules(VALID_WALLET) == [summary]


def test_executed_capsules_corrupt_json_is_empty():
    store = MemoryKeyValueStore({f"capsule:{VALID_WALLET}:executed_capsules": "{not json"})
    assert CapsuleCache(store).executed_capsules(VALID_WALLET) == []


def test_executed_capsules_accept_camel_case_entries():
    store = MemoryKeyValueStore(
        {f"capsule:{VALID_WALLET}:executed_capsules": f'[{{"executionTx": "{SIG_B}", "executedAt": 5}}, {{"bad": 1}}]'}
    )
    summaries = CapsuleCache(store).executed_capsules(VALID_WALLET)
    assert summaries == [ExecutedCapsuleSummary(execution_tx=SIG_B, executed_at=5)]


def test_cache_over_sqlite(tmp_path):
    cache = CapsuleCache(SQLiteKeyValueStore(tmp_path / "cache.db"))
    cache.set_latest_signature(VALID_WALLET, "creation", SIG_A)
    cache.record_intent(VALID_WALLET, "intent", 1)
    reopened = CapsuleCache(SQLiteKeyValueStore(tmp_path / "cache.db"))
    assert reopened.signatures(VALID_WALLET, "creation") == [SIG_A]
    assert reopened.intents(VALID_WALLET)[0].text == "intent"
