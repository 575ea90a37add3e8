"""
Transaction evidence extraction: raw RPC / indexer payloads to classifier inputs.

Tolerates the shapes the sources actually serve: a getTransaction result
(legacy or versioned message, json or jsonParsed), an enhanced indexer
transaction (top-level signature/timestamp/instructions/nativeTransfers), and
either of those wrapped under `transaction` or `tx`. Purely structural; the
kind decision lives in classifier.py.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

import base58

from capsule_ledger.onchain.indexer_client import transaction_signature

DISCRIMINATOR_LEN = 8
# Millisecond timestamps are normalized to seconds
_MS_THRESHOLD = 1_000_000_000_000


@dataclass(frozen=True)
class AccountInvolvement:
    """Structural signals about how a transaction touched the tracked program."""

    involves_program: bool = False
    pre_balances: tuple[int | None, ...] = ()
    post_balances: tuple[int | None, ...] = ()
    native_transfer_count: int = 0
    token_transfer_count: int = 0
    event_types: tuple[str, ...] = ()

    def positive_balance_deltas(self) -> int:
        count = 0
        for pre, post in zip(self.pre_balances, self.post_balances):
            if post is not None and post - (pre or 0) > 0:
                count += 1
        return count

    def has_asset_distribution(self) -> bool:
        """Fan-out payout: several accounts credited, or several transfer entries."""
        return (
            self.positive_balance_deltas() > 1
            or self.native_transfer_count > 1
            or self.token_transfer_count > 1
        )

    def creates_account(self) -> bool:
        """Some account went from an empty (zero/None) balance to a positive one."""
        for pre, post in zip(self.pre_balances, self.post_balances):
            if not pre and post is not None and post > 0:
                return True
        return False


@dataclass(frozen=True)
class TransactionEvidence:
    signature: str
    block_time: int | None
    slot: int | None
    fee: int | None
    succeeded: bool
    log_lines: tuple[str, ...] = ()
    account_keys: tuple[str, ...] = ()
    instruction_discriminators: tuple[bytes, ...] = ()
    involvement: AccountInvolvement = field(default_factory=AccountInvolvement)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_block_time(value: Any) -> int | None:
    """Unix seconds, or None when absent/unparseable; millisecond values are scaled down."""
    ts = _coerce_int(value)
    if ts is None or ts <= 0:
        return None
    if ts > _MS_THRESHOLD:
        ts //= 1000
    return ts


def _message_and_meta(raw: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return (message, meta) from a getTransaction-style result, unwrapping `tx`."""
    root = _as_dict(raw.get("tx")) or raw
    tx_obj = _as_dict(root.get("transaction"))
    message = _as_dict(tx_obj.get("message")) or _as_dict(_as_dict(tx_obj.get("transaction")).get("message"))
    meta = _as_dict(root.get("meta")) or _as_dict(tx_obj.get("meta"))
    return message, meta


def _first_present(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def extract_block_time(raw: dict[str, Any]) -> int | None:
    _, meta = _message_and_meta(raw)
    return normalize_block_time(
        _first_present(
            raw.get("timestamp"),
            raw.get("blockTime"),
            _as_dict(raw.get("transaction")).get("blockTime"),
            meta.get("blockTime"),
            _as_dict(raw.get("tx")).get("blockTime"),
        )
    )


def extract_log_lines(raw: dict[str, Any]) -> tuple[str, ...]:
    _, meta = _message_and_meta(raw)
    for candidate in (raw.get("logMessages"), meta.get("logMessages")):
        if isinstance(candidate, list):
            return tuple(line for line in candidate if isinstance(line, str))
    events = raw.get("events")
    if isinstance(events, list):
        return tuple(e["logMessage"] for e in events if isinstance(e, dict) and isinstance(e.get("logMessage"), str))
    return ()


def _key_to_str(key: Any) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, dict):
        return str(key.get("pubkey") or key.get("account") or "")
    return ""


def extract_account_keys(raw: dict[str, Any]) -> list[str]:
    """
    Resolve account keys to base58 strings (json vs jsonParsed, versioned
    loaded addresses), falling back to the indexer's accountData / accounts.
    """
    message, meta = _message_and_meta(raw)
    keys = _as_list(message.get("accountKeys")) or _as_list(message.get("staticAccountKeys"))
    out = [k for k in (_key_to_str(key) for key in keys) if k]
    loaded = _as_dict(meta.get("loadedAddresses"))
    for role in ("writable", "readonly"):
        for addr in _as_list(loaded.get(role)):
            if isinstance(addr, str) and addr:
                out.append(addr)
    if out:
        return out
    for entry in _as_list(raw.get("accountData")):
        k = _key_to_str(entry)
        if k:
            out.append(k)
    if not out:
        out = [k for k in (_key_to_str(a) for a in _as_list(raw.get("accounts"))) if k]
    return out


def _instructions(raw: dict[str, Any]) -> list[dict[str, Any]]:
    message, meta = _message_and_meta(raw)
    instructions = [ix for ix in _as_list(message.get("instructions")) if isinstance(ix, dict)]
    for block in _as_list(meta.get("innerInstructions")):
        instructions.extend(ix for ix in _as_list(_as_dict(block).get("instructions")) if isinstance(ix, dict))
    for ix in _as_list(raw.get("instructions")):
        if not isinstance(ix, dict):
            continue
        instructions.append(ix)
        instructions.extend(i for i in _as_list(ix.get("innerInstructions")) if isinstance(i, dict))
    return instructions


def _instruction_program(ix: dict[str, Any], account_keys: list[str]) -> str:
    """Program id of an instruction: explicit programId, or programIdIndex into the account keys."""
    explicit = ix.get("programId") or ix.get("program")
    if isinstance(explicit, str) and explicit:
        return explicit
    idx = _coerce_int(ix.get("programIdIndex"))
    if idx is None or not (0 <= idx < len(account_keys)):
        return ""
    return account_keys[idx]


def decode_instruction_data(data: str) -> bytes | None:
    """Decode base58 instruction data; fall back to base64 for provider variance."""
    if not data:
        return None
    try:
        return base58.b58decode(data)
    except ValueError:
        pass
    try:
        return base64.b64decode(data, validate=True)
    except ValueError:
        return None


def _event_types(raw: dict[str, Any]) -> tuple[str, ...]:
    out: list[str] = []
    top = raw.get("type")
    if isinstance(top, str) and top:
        out.append(top)
    events = raw.get("events")
    if isinstance(events, list):
        for event in events:
            if isinstance(event, dict):
                t = event.get("type") or event.get("eventType")
                if isinstance(t, str) and t:
                    out.append(t)
    elif isinstance(events, dict):
        for name, event in events.items():
            out.append(str(name))
            t = _as_dict(event).get("type")
            if isinstance(t, str) and t:
                out.append(t)
    return tuple(out)


def _succeeded(raw: dict[str, Any], meta: dict[str, Any]) -> bool:
    for err in (meta.get("err"), raw.get("transactionError"), raw.get("err")):
        if err:
            return False
    return True


def extract_evidence(raw: dict[str, Any], program_id: str) -> TransactionEvidence:
    """Normalize one raw transaction into the evidence the classifier consumes."""
    _, meta = _message_and_meta(raw)
    account_keys = extract_account_keys(raw)
    log_lines = extract_log_lines(raw)

    program_ids: set[str] = set()
    discriminators: list[bytes] = []
    for ix in _instructions(raw):
        program = _instruction_program(ix, account_keys)
        if program:
            program_ids.add(program)
        if not program_id or program != program_id:
            continue
        data = ix.get("data")
        decoded = decode_instruction_data(data) if isinstance(data, str) else None
        if decoded is not None and len(decoded) >= DISCRIMINATOR_LEN:
            discriminators.append(bytes(decoded[:DISCRIMINATOR_LEN]))

    involves_program = bool(program_id) and (
        program_id in account_keys
        or program_id in program_ids
        or any(program_id in line for line in log_lines)
    )

    pre = tuple(_coerce_int(b) for b in _as_list(meta.get("preBalances")))
    post = tuple(_coerce_int(b) for b in _as_list(meta.get("postBalances")))
    native = _as_list(raw.get("nativeTransfers")) or _as_list(meta.get("nativeTransfers"))
    token = _as_list(raw.get("tokenTransfers")) or _as_list(meta.get("tokenTransfers"))

    slot = _coerce_int(_first_present(raw.get("slot"), _as_dict(raw.get("tx")).get("slot")))
    fee = _coerce_int(_first_present(raw.get("fee"), meta.get("fee")))

    return TransactionEvidence(
        signature=transaction_signature(raw),
        block_time=extract_block_time(raw),
        slot=slot,
        fee=fee,
        succeeded=_succeeded(raw, meta),
        log_lines=log_lines,
        account_keys=tuple(account_keys),
        instruction_discriminators=tuple(discriminators),
        involvement=AccountInvolvement(
            involves_program=involves_program,
            pre_balances=pre,
            post_balances=post,
            native_transfer_count=len(native),
            token_transfer_count=len(token),
            event_types=_event_types(raw),
        ),
    )
