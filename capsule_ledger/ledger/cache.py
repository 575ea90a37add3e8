"""
Durable client-local cache for capsule cursors, signatures and intent text.

The store is an advisory key-value map with no cross-key transactions; the
ledger/RPC remain the ground truth. All access goes through the abstract
KeyValueStore interface so the cache is swappable (SQLite file, memory) and
mockable. CapsuleCache layers a small typed schema (wallet x purpose) on top.

Keys:
    capsule:{wallet}:{purpose}_tx                 latest signature
    capsule:{wallet}:{purpose}_tx:{signature}     historical signature (additive)
    capsule:{wallet}:intent:{created_at}          raw intent text
    capsule:{wallet}:executed_capsules            JSON list of executed summaries
"""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterator

from capsule_ledger.capsule_logging import get_logger

logger = get_logger(__name__)

PURPOSE_CREATION = "creation"
PURPOSE_EXECUTION = "execution"
PURPOSES = (PURPOSE_CREATION, PURPOSE_EXECUTION)

SCHEMA_KV = """
CREATE TABLE IF NOT EXISTS capsule_kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


# -----------------------------------------------------------------------------
# Abstract store
# -----------------------------------------------------------------------------


class KeyValueStore(ABC):
    """String key -> string value; no transactional guarantees across keys."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """Keys starting with prefix, sorted."""
        ...


class MemoryKeyValueStore(KeyValueStore):
    """In-process store (tests, API without a cache file)."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec
        self.ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.executescript(SCHEMA_KV)

    def get(self, key: str) -> str | None:
        with self._cursor() as cur:
            cur.execute("SELECT value FROM capsule_kv WHERE key = ?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO capsule_kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def delete(self, key: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM capsule_kv WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        # Range scan instead of LIKE so '_' and '%' in keys match literally
        with self._cursor() as cur:
            if prefix:
                cur.execute(
                    "SELECT key FROM capsule_kv WHERE key >= ? AND key < ? ORDER BY key",
                    (prefix, prefix + "\U0010ffff"),
                )
            else:
                cur.execute("SELECT key FROM capsule_kv ORDER BY key")
            return [row[0] for row in cur.fetchall()]


# -----------------------------------------------------------------------------
# Typed schema
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class IntentRecord:
    text: str
    created_at: int


@dataclass(frozen=True)
class ExecutedCapsuleSummary:
    execution_tx: str
    executed_at: int | None = None
    intent: str | None = None
    creation_tx: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ExecutedCapsuleSummary | None":
        tx = raw.get("execution_tx") or raw.get("executionTx")
        if not isinstance(tx, str) or not tx:
            return None
        executed_at = raw.get("executed_at", raw.get("executedAt"))
        creation_tx = raw.get("creation_tx") or raw.get("creationTx")
        return cls(
            execution_tx=tx,
            executed_at=int(executed_at) if isinstance(executed_at, (int, float)) else None,
            intent=raw.get("intent") if isinstance(raw.get("intent"), str) else None,
            creation_tx=creation_tx if isinstance(creation_tx, str) else None,
        )


def _check_purpose(purpose: str) -> str:
    if purpose not in PURPOSES:
        raise ValueError(f"purpose must be one of {PURPOSES}, got {purpose!r}")
    return purpose


class CapsuleCache:
    """Wallet x purpose view over a KeyValueStore."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @staticmethod
    def _wallet_prefix(wallet: str) -> str:
        return f"capsule:{wallet}:"

    def _latest_key(self, wallet: str, purpose: str) -> str:
        return f"{self._wallet_prefix(wallet)}{_check_purpose(purpose)}_tx"

    def _history_prefix(self, wallet: str, purpose: str) -> str:
        return self._latest_key(wallet, purpose) + ":"

    # --- signatures -------------------------------------------------------

    def latest_signature(self, wallet: str, purpose: str) -> str | None:
        return self._store.get(self._latest_key(wallet, purpose)) or None

    def set_latest_signature(self, wallet: str, purpose: str, signature: str) -> None:
        self._store.set(self._latest_key(wallet, purpose), signature)
        self.add_signature(wallet, purpose, signature)

    def add_signature(self, wallet: str, purpose: str, signature: str) -> None:
        """Record a historical signature; existing slots are never overwritten."""
        if not signature:
            return
        self._store.set(self._history_prefix(wallet, purpose) + signature, signature)

    def signatures(self, wallet: str, purpose: str) -> list[str]:
        """Latest slot first, then every historical slot, de-duplicated."""
        out: list[str] = []
        latest = self.latest_signature(wallet, purpose)
        if latest:
            out.append(latest)
        for key in self._store.keys(self._history_prefix(wallet, purpose)):
            sig = self._store.get(key)
            if sig and sig not in out:
                out.append(sig)
        return out

    def all_signatures(self, wallet: str) -> dict[str, list[str]]:
        return {purpose: self.signatures(wallet, purpose) for purpose in PURPOSES}

    def forget_signature(self, wallet: str, signature: str) -> None:
        """Drop a proven-stale signature from every slot of both purposes."""
        for purpose in PURPOSES:
            self._store.delete(self._history_prefix(wallet, purpose) + signature)
            if self.latest_signature(wallet, purpose) == signature:
                self._store.delete(self._latest_key(wallet, purpose))
        logger.info("cache_signature_forgotten", wallet_id=wallet, signature=signature)

    # --- intents ------------------------------------------------------------

    def record_intent(self, wallet: str, text: str, created_at: int) -> None:
        self._store.set(f"{self._wallet_prefix(wallet)}intent:{int(created_at)}", text)

    def intents(self, wallet: str) -> list[IntentRecord]:
        """Cached intent texts, newest first."""
        prefix = f"{self._wallet_prefix(wallet)}intent:"
        out: list[IntentRecord] = []
        for key in self._store.keys(prefix):
            text = self._store.get(key)
            try:
                created_at = int(key[len(prefix):])
            except ValueError:
                continue
            if text:
                out.append(IntentRecord(text=text, created_at=created_at))
        out.sort(key=lambda r: r.created_at, reverse=True)
        return out

    # --- executed capsules ---------------------------------------------------

    def _executed_key(self, wallet: str) -> str:
        return f"{self._wallet_prefix(wallet)}executed_capsules"

    def executed_capsules(self, wallet: str) -> list[ExecutedCapsuleSummary]:
        raw = self._store.get(self._executed_key(wallet))
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("cache_executed_capsules_corrupt", wallet_id=wallet)
            return []
        if not isinstance(parsed, list):
            return []
        out = []
        for item in parsed:
            if isinstance(item, dict):
                summary = ExecutedCapsuleSummary.from_dict(item)
                if summary is not None:
                    out.append(summary)
        return out

    def add_executed_capsule(self, wallet: str, summary: ExecutedCapsuleSummary) -> bool:
        """Append a summary unless its execution signature is already recorded."""
        current = self.executed_capsules(wallet)
        if any(s.execution_tx == summary.execution_tx for s in current):
            return False
        current.append(summary)
        self._store.set(self._executed_key(wallet), json.dumps([s.to_dict() for s in current]))
        return True
