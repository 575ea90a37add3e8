"""
Solana JSON-RPC client (async): the ledger read interface.

Methods used by the capsule pipeline:
- getProgramAccounts(programId) -> [(address, raw bytes)]
- getTransaction(signature, {commitment, maxSupportedTransactionVersion})
- getSignaturesForAddress(address, {limit, before})
- getBalance(address) -> lamports

Transport errors, HTTP 429 and 5xx are retried with exponential backoff; a JSON-RPC
error object raises RpcError immediately.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
from typing import Any

import httpx

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.config.env import mask_api_key
from capsule_ledger.core.exceptions import RpcError

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SEC = 1.0
MAX_RETRY_DELAY_SEC = 10.0

_request_ids = itertools.count(1)


def raw_bytes_from_account_data(data: object) -> bytes | None:
    """Normalize RPC account.data to bytes. Handles bytes, base64 str, [base64, "base64"], list of ints."""
    if data is None:
        return None
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        try:
            return base64.b64decode(data)
        except ValueError:
            return None
    if isinstance(data, (list, tuple)) and data:
        first = data[0]
        if isinstance(first, str):
            try:
                return base64.b64decode(first)
            except ValueError:
                return None
        if isinstance(first, int):
            return bytes(data)
    return None


class SolanaRpcClient:
    """
    Minimal async Solana JSON-RPC client over httpx.

    Pass an existing httpx.AsyncClient to share a connection pool (or a
    MockTransport-backed client in tests); otherwise one is created and owned
    by this instance. Use as an async context manager or call aclose().
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        commitment: str = "confirmed",
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_sec: float = DEFAULT_RETRY_DELAY_SEC,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._rpc_url = rpc_url.strip()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))
        self.commitment = commitment
        self._max_retries = max_retries
        self._retry_delay = retry_delay_sec

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(self, method: str, params: list[Any]) -> Any:
        """Perform one JSON-RPC call and return its `result`; raise RpcError on failure."""
        body = {"jsonrpc": "2.0", "id": next(_request_ids), "method": method, "params": params}
        delay = self._retry_delay
        last_error = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                resp = await self._client.post(self._rpc_url, json=body)
                if resp.status_code == 429:
                    last_error = "rate limited (429)"
                    logger.warning("rpc_rate_limited", method=method, attempt=attempt + 1)
                else:
                    resp.raise_for_status()
                    data = resp.json()
                    if not isinstance(data, dict):
                        raise RpcError(method, "malformed response body")
                    err = data.get("error")
                    if err:
                        if isinstance(err, dict):
                            raise RpcError(method, str(err.get("message", err)), err.get("code"))
                        raise RpcError(method, str(err))
                    return data.get("result")
            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    "rpc_request_retry",
                    method=method,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    rpc_url=mask_api_key(self._rpc_url),
                    error=last_error,
                )
            if attempt + 1 < self._max_retries:
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY_SEC)
        raise RpcError(method, f"giving up after {self._max_retries} attempts: {last_error}")

    async def get_program_accounts(
        self,
        program_id: str,
        *,
        filters: list[dict[str, Any]] | None = None,
    ) -> list[tuple[str, bytes]]:
        opts: dict[str, Any] = {"encoding": "base64", "commitment": self.commitment}
        if filters:
            opts["filters"] = filters
        result = await self.call("getProgramAccounts", [program_id, opts])
        # Some providers wrap the list as {context, value}
        if isinstance(result, dict):
            result = result.get("value")
        out: list[tuple[str, bytes]] = []
        for item in result or []:
            if not isinstance(item, dict):
                continue
            address = item.get("pubkey")
            raw = raw_bytes_from_account_data((item.get("account") or {}).get("data"))
            if address and raw is not None:
                out.append((address, raw))
        return out

    async def get_transaction(self, signature: str, *, commitment: str | None = None) -> dict[str, Any] | None:
        """Return the getTransaction result, or None when the ledger has no such transaction."""
        result = await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": commitment or self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        return result if isinstance(result, dict) else None

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int = 1000,
        before: str | None = None,
    ) -> list[dict[str, Any]]:
        opts: dict[str, Any] = {"limit": limit, "commitment": self.commitment}
        if before is not None:
            opts["before"] = before
        result = await self.call("getSignaturesForAddress", [address, opts])
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, dict) and item.get("signature")]

    async def get_balance(self, address: str) -> int:
        result = await self.call("getBalance", [address, {"commitment": self.commitment}])
        value = result.get("value") if isinstance(result, dict) else result
        if not isinstance(value, int):
            raise RpcError("getBalance", f"unexpected balance value: {value!r}")
        return value
