"""
Capsule transaction ledger: evidence, classification, sources, reconciliation.
"""

from capsule_ledger.ledger.cache import (
    CapsuleCache,
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
)
from capsule_ledger.ledger.classifier import ClassificationPolicy, classify, classify_evidence
from capsule_ledger.ledger.models import (
    Ledger,
    LedgerCursors,
    LedgerView,
    ReconcileResult,
    RecordSource,
    TransactionRecord,
    TxKind,
)
from capsule_ledger.ledger.pipeline import LedgerPipeline, build_pipeline, run_periodic_recheck
from capsule_ledger.ledger.reconciler import Reconciler, reconcile

__all__ = [
    "CapsuleCache",
    "ClassificationPolicy",
    "KeyValueStore",
    "Ledger",
    "LedgerCursors",
    "LedgerPipeline",
    "LedgerView",
    "MemoryKeyValueStore",
    "ReconcileResult",
    "Reconciler",
    "RecordSource",
    "SQLiteKeyValueStore",
    "TransactionRecord",
    "TxKind",
    "build_pipeline",
    "classify",
    "classify_evidence",
    "reconcile",
    "run_periodic_recheck",
]
