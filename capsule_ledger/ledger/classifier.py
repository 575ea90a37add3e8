"""
Capsule instruction classification.

Decides whether a transaction created/recreated a capsule or executed one,
from log markers, Anchor instruction discriminators and structural balance
evidence. Pure and total: never raises, never touches the network.

Order of checks matters:
1. execution markers / discriminator / event, or program involvement plus fan-out payout
2. creation markers / discriminator
3. program involvement plus a freshly funded account
4. program involvement with no other signal -> policy fallback (logged)
5. otherwise unclassified
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.ledger.evidence import AccountInvolvement, TransactionEvidence
from capsule_ledger.ledger.models import TxKind

logger = get_logger(__name__)


def anchor_instruction_discriminator(name: str) -> bytes:
    """Anchor: instruction discriminator = first 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


EXECUTE_INTENT_DISCRIMINATOR = anchor_instruction_discriminator("execute_intent")
CREATE_CAPSULE_DISCRIMINATOR = anchor_instruction_discriminator("create_capsule")
RECREATE_CAPSULE_DISCRIMINATOR = anchor_instruction_discriminator("recreate_capsule")

EXECUTION_DISCRIMINATORS = frozenset({EXECUTE_INTENT_DISCRIMINATOR})
CREATION_DISCRIMINATORS = frozenset({CREATE_CAPSULE_DISCRIMINATOR, RECREATE_CAPSULE_DISCRIMINATOR})

# Lowercase substrings matched anywhere in a log line
EXECUTION_MARKERS = (
    "execute_intent",
    "executeintent",
    "intent executed",
    "intentexecuted",
    "capsule executed",
)
CREATION_MARKERS = (
    "createcapsule",
    "create_capsule",
    "recreatecapsule",
    "recreate_capsule",
    "intent capsule created",
    "capsule created",
    "capsule recreated",
)
EXECUTION_EVENT_MARKERS = ("intentexecuted", "intent executed", "execute_intent")


@dataclass(frozen=True)
class ClassificationPolicy:
    """
    What to report when a transaction provably involves the program but no
    signal resolves its kind. Unclassified by default; Creation reproduces
    the legacy dashboard behavior.
    """

    unresolved_kind: TxKind = TxKind.UNCLASSIFIED

    @classmethod
    def from_setting(cls, value: str) -> "ClassificationPolicy":
        if (value or "").strip().lower() == TxKind.CREATION.value:
            return cls(unresolved_kind=TxKind.CREATION)
        return cls()


DEFAULT_POLICY = ClassificationPolicy()


def _contains_marker(lines: Iterable[str], markers: tuple[str, ...]) -> bool:
    for line in lines:
        if not isinstance(line, str):
            continue
        lower = line.lower()
        if any(m in lower for m in markers):
            return True
    return False


def _has_discriminator(discriminators: Iterable[bytes], wanted: frozenset[bytes]) -> bool:
    return any(d[:8] in wanted for d in discriminators)


def classify(
    log_lines: Iterable[str] | None,
    instruction_discriminators: Iterable[bytes] | None = None,
    involvement: AccountInvolvement | None = None,
    policy: ClassificationPolicy | None = None,
    *,
    signature: str | None = None,
) -> TxKind:
    """Return the capsule instruction kind for one transaction's evidence."""
    lines = [line for line in (log_lines or []) if isinstance(line, str)]
    discriminators = [
        bytes(d) for d in (instruction_discriminators or []) if isinstance(d, (bytes, bytearray, memoryview)) and d
    ]
    involvement = involvement or AccountInvolvement()
    policy = policy or DEFAULT_POLICY

    execution_signal = (
        _contains_marker(lines, EXECUTION_MARKERS)
        or _contains_marker(involvement.event_types, EXECUTION_EVENT_MARKERS)
        or _has_discriminator(discriminators, EXECUTION_DISCRIMINATORS)
    )
    if execution_signal:
        return TxKind.EXECUTION
    if involvement.involves_program and involvement.has_asset_distribution():
        return TxKind.EXECUTION

    if _contains_marker(lines, CREATION_MARKERS) or _has_discriminator(discriminators, CREATION_DISCRIMINATORS):
        return TxKind.CREATION

    if not involvement.involves_program:
        return TxKind.UNCLASSIFIED

    if involvement.creates_account():
        return TxKind.CREATION

    logger.warning(
        "classification_ambiguous",
        signature=signature or None,
        fallback=policy.unresolved_kind.value,
        log_lines=len(lines),
    )
    return policy.unresolved_kind


def classify_evidence(evidence: TransactionEvidence, policy: ClassificationPolicy | None = None) -> TxKind:
    return classify(
        evidence.log_lines,
        evidence.instruction_discriminators,
        evidence.involvement,
        policy,
        signature=evidence.signature,
    )
