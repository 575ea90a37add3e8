"""
Application-level exceptions.

One class per failure kind of the capsule pipeline. None of them is fatal to
the pipeline as a whole: each is recovered at a well-defined boundary
(decoder, adapter, pipeline, aggregator) and turned into a partial result.
"""

from __future__ import annotations


class CapsuleLedgerError(Exception):
    """Base class for all Capsule Ledger errors."""


class DecodeFailure(CapsuleLedgerError):
    """Malformed or foreign capsule account bytes."""


class RpcError(CapsuleLedgerError):
    """JSON-RPC error object, HTTP failure or exhausted retries."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        self.method = method
        self.message = message
        self.code = code
        super().__init__(f"{method}: {message} (code={code})")


class SourceUnavailable(CapsuleLedgerError):
    """A whole record source could not be reached for this pass."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")


class RecordDetailUnavailable(CapsuleLedgerError):
    """Detail (time, logs, balances) for one signature could not be fetched."""

    def __init__(self, signature: str, reason: str) -> None:
        self.signature = signature
        self.reason = reason
        super().__init__(f"detail unavailable for {signature[:16]}: {reason}")


class ExternalFeedUnavailable(CapsuleLedgerError):
    """Best-effort external feed (price) failed."""

    def __init__(self, feed: str, reason: str) -> None:
        self.feed = feed
        self.reason = reason
        super().__init__(f"{feed} unavailable: {reason}")
