"""
Core: shared exceptions and cross-cutting concerns.
"""

from capsule_ledger.core.exceptions import (
    CapsuleLedgerError,
    DecodeFailure,
    ExternalFeedUnavailable,
    RecordDetailUnavailable,
    RpcError,
    SourceUnavailable,
)

__all__ = [
    "CapsuleLedgerError",
    "DecodeFailure",
    "ExternalFeedUnavailable",
    "RecordDetailUnavailable",
    "RpcError",
    "SourceUnavailable",
]
