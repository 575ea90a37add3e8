"""
Data models for capsule transaction reconciliation.

TransactionRecord is the common shape every source adapter produces; a Ledger
is the reconciled, de-duplicated, newest-first sequence for one wallet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TxKind(str, Enum):
    CREATION = "creation"
    EXECUTION = "execution"
    UNCLASSIFIED = "unclassified"


class RecordSource(str, Enum):
    LOCAL_CACHE = "local_cache"
    LEDGER_RPC = "ledger_rpc"
    INDEXER_API = "indexer_api"


# Richer sources win merge ties
SOURCE_PRIORITY: dict[RecordSource, int] = {
    RecordSource.INDEXER_API: 2,
    RecordSource.LEDGER_RPC: 1,
    RecordSource.LOCAL_CACHE: 0,
}

KIND_RANK: dict[TxKind, int] = {
    TxKind.EXECUTION: 2,
    TxKind.CREATION: 1,
    TxKind.UNCLASSIFIED: 0,
}


@dataclass(frozen=True)
class TransactionRecord:
    """
    One observation of a capsule transaction from one source.

    Created per reconciliation pass; only the most-recent creation/execution
    signatures outlive it (as cache cursors).
    """

    signature: str
    kind: TxKind
    source: RecordSource
    block_time: int | None = None
    """Unix seconds; None when unknown (never coerced to zero)."""
    succeeded: bool = True
    slot: int | None = None
    fee: int | None = None
    missing: bool = False
    """The ledger answered that no such transaction exists (stale cache entry)."""

    def to_dict(self) -> dict[str, Any]:
        """User-facing view; `source` is kept internal to merging."""
        return {
            "signature": self.signature,
            "kind": self.kind.value,
            "block_time": self.block_time,
            "succeeded": self.succeeded,
            "slot": self.slot,
            "fee": self.fee,
        }


@dataclass(frozen=True)
class LedgerCursors:
    """Most recent creation / execution signatures; the cross-session resume points."""

    creation_signature: str | None = None
    execution_signature: str | None = None
    execution_block_time: int | None = None


@dataclass(frozen=True)
class Ledger:
    """Reconciled transaction history for one wallet, newest first, unique by signature."""

    wallet: str
    entries: tuple[TransactionRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def signatures(self) -> list[str]:
        return [e.signature for e in self.entries]

    def latest(self, kind: TxKind) -> TransactionRecord | None:
        for entry in self.entries:
            if entry.kind == kind:
                return entry
        return None


@dataclass(frozen=True)
class ReconcileResult:
    ledger: Ledger
    cursors: LedgerCursors
    stale_signatures: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class LedgerView:
    """Pipeline output: the ledger plus which sources contributed."""

    wallet: str
    result: ReconcileResult
    sources_ok: tuple[str, ...] = ()
    sources_failed: tuple[str, ...] = ()

    @property
    def available(self) -> bool:
        return bool(self.sources_ok) or not self.sources_failed

    def to_dict(self) -> dict[str, Any]:
        cursors = self.result.cursors
        return {
            "wallet": self.wallet,
            "available": self.available,
            "transactions": [e.to_dict() for e in self.result.ledger] if self.available else [],
            "creation_signature": cursors.creation_signature,
            "execution_signature": cursors.execution_signature,
            "sources_ok": list(self.sources_ok),
            "sources_failed": list(self.sources_failed),
        }
