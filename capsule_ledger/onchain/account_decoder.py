"""
Intent capsule account decoder: raw account bytes to CapsuleSnapshot.

Anchor layout (little-endian):
    8  discriminator (skipped)
    32 owner pubkey
    8  inactivity_period (i64, seconds)
    8  last_activity (i64, unix seconds)
    4  intent_data length (u32) + intent_data bytes
    1  is_active (1 = true)
    1  has executed_at (Option tag)
    8  executed_at (i64), only when the tag is 1

Pure and side-effect free. decode_capsule_account() never raises; malformed or
foreign accounts decode to None so a batch scan can skip them.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Iterable

from solders.pubkey import Pubkey

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.core.exceptions import DecodeFailure

logger = get_logger(__name__)

# Anchor: account discriminator = first 8 bytes of sha256("account:<AccountName>")
CAPSULE_ACCOUNT_DISCRIMINATOR = hashlib.sha256(b"account:IntentCapsule").digest()[:8]

DISCRIMINATOR_LEN = 8
OWNER_LEN = 32
I64_LEN = 8
U32_LEN = 4
OWNER_OFFSET = DISCRIMINATOR_LEN  # 8
INACTIVITY_OFFSET = OWNER_OFFSET + OWNER_LEN  # 40
LAST_ACTIVITY_OFFSET = INACTIVITY_OFFSET + I64_LEN  # 48
PAYLOAD_LEN_OFFSET = LAST_ACTIVITY_OFFSET + I64_LEN  # 56
PAYLOAD_OFFSET = PAYLOAD_LEN_OFFSET + U32_LEN  # 60
# Fixed fields including both flag bytes (empty payload, no executed_at)
MIN_ACCOUNT_LEN = PAYLOAD_OFFSET + 1 + 1  # 62


@dataclass(frozen=True)
class CapsuleSnapshot:
    """Decoded state of one intent capsule account."""

    owner: Pubkey
    inactivity_threshold_seconds: int
    last_activity_unix_seconds: int
    payload: bytes
    """Opaque intent description; decoded elsewhere."""
    is_active: bool
    executed_at_unix_seconds: int | None = None
    """Present only when the account's executed_at tag byte is 1."""

    @property
    def owner_address(self) -> str:
        return str(self.owner)

    def can_execute(self, now: int) -> bool:
        """True when the owner has been silent for at least the inactivity threshold."""
        return now - self.last_activity_unix_seconds >= self.inactivity_threshold_seconds

    def to_dict(self) -> dict:
        return {
            "owner": self.owner_address,
            "inactivity_threshold_seconds": self.inactivity_threshold_seconds,
            "last_activity_unix_seconds": self.last_activity_unix_seconds,
            "payload_len": len(self.payload),
            "is_active": self.is_active,
            "executed_at_unix_seconds": self.executed_at_unix_seconds,
        }


def _read_i64(data: bytes, offset: int) -> int:
    return struct.unpack_from("<q", data, offset)[0]


def _decode(data: bytes) -> CapsuleSnapshot:
    if data is None or len(data) < MIN_ACCOUNT_LEN:
        raise DecodeFailure(f"account too short: {0 if data is None else len(data)} < {MIN_ACCOUNT_LEN}")

    owner = Pubkey.from_bytes(bytes(data[OWNER_OFFSET:INACTIVITY_OFFSET]))
    inactivity = _read_i64(data, INACTIVITY_OFFSET)
    last_activity = _read_i64(data, LAST_ACTIVITY_OFFSET)
    payload_len = struct.unpack_from("<I", data, PAYLOAD_LEN_OFFSET)[0]

    offset = PAYLOAD_OFFSET
    # The payload must be consumed in full before the flag bytes are read.
    if offset + payload_len + 2 > len(data):
        raise DecodeFailure(f"payload length {payload_len} exceeds remaining {len(data) - offset} bytes")
    payload = bytes(data[offset : offset + payload_len])
    offset += payload_len

    is_active = data[offset] == 1
    offset += 1
    has_executed_at = data[offset] == 1
    offset += 1

    executed_at: int | None = None
    if has_executed_at:
        if offset + I64_LEN > len(data):
            raise DecodeFailure("executed_at tag set but value truncated")
        executed_at = _read_i64(data, offset)

    return CapsuleSnapshot(
        owner=owner,
        inactivity_threshold_seconds=inactivity,
        last_activity_unix_seconds=last_activity,
        payload=payload,
        is_active=is_active,
        executed_at_unix_seconds=executed_at,
    )


def decode_capsule_account(data: bytes | None) -> CapsuleSnapshot | None:
    """
    Decode raw capsule account bytes. Returns None on truncated, malformed or
    foreign input; never raises and never returns a partial snapshot.
    """
    try:
        return _decode(data)  # type: ignore[arg-type]
    except (DecodeFailure, struct.error, ValueError, TypeError) as e:
        logger.debug("capsule_decode_skipped", error=str(e))
        return None


def encode_capsule_account(
    snapshot: CapsuleSnapshot,
    *,
    discriminator: bytes = CAPSULE_ACCOUNT_DISCRIMINATOR,
) -> bytes:
    """Serialize a snapshot into the on-chain layout (fixtures, round trips)."""
    if len(discriminator) != DISCRIMINATOR_LEN:
        raise ValueError("discriminator must be 8 bytes")
    out = bytearray(discriminator)
    out += bytes(snapshot.owner)
    out += struct.pack("<q", snapshot.inactivity_threshold_seconds)
    out += struct.pack("<q", snapshot.last_activity_unix_seconds)
    out += struct.pack("<I", len(snapshot.payload))
    out += snapshot.payload
    out.append(1 if snapshot.is_active else 0)
    if snapshot.executed_at_unix_seconds is None:
        out.append(0)
    else:
        out.append(1)
        out += struct.pack("<q", snapshot.executed_at_unix_seconds)
    return bytes(out)


def decode_program_accounts(
    accounts: Iterable[tuple[str, bytes]],
) -> list[tuple[str, CapsuleSnapshot]]:
    """Decode (address, raw) pairs from a program scan, skipping undecodable entries."""
    out: list[tuple[str, CapsuleSnapshot]] = []
    skipped = 0
    for address, raw in accounts:
        snapshot = decode_capsule_account(raw)
        if snapshot is None:
            skipped += 1
            continue
        out.append((address, snapshot))
    if skipped:
        logger.info("capsule_scan_skipped_accounts", skipped=skipped, decoded=len(out))
    return out
