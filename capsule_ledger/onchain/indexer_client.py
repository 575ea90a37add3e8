"""
Helius enhanced transactions API client (async).

GET {base}/addresses/{address}/transactions?api-key=...&limit=N[&before=cursor]

Pages until a page comes back short of the requested size, the page budget is
spent, or the provider errors. A failure on the first page raises
SourceUnavailable; a failure on a later page returns what was accumulated.
"""

from __future__ import annotations

from typing import Any

import httpx

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.core.exceptions import SourceUnavailable

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 5
SOURCE_NAME = "indexer_api"


def extract_transaction_list(data: Any) -> list[dict[str, Any]]:
    """Accept a bare array, {transactions: [...]}, {result: [...]} or {data: [...]}."""
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = []
        for key in ("transactions", "result", "data"):
            if isinstance(data.get(key), list):
                items = data[key]
                break
    else:
        items = []
    return [tx for tx in items if isinstance(tx, dict)]


def transaction_signature(tx: dict[str, Any]) -> str:
    """Signature of an enhanced (or wrapped RPC) transaction; empty when absent."""
    inner = tx.get("transaction") if isinstance(tx.get("transaction"), dict) else {}
    wrapped = tx.get("tx") if isinstance(tx.get("tx"), dict) else {}
    candidates = [
        tx.get("signature"),
        tx.get("transactionSignature"),
        (inner.get("signatures") or [None])[0],
        ((inner.get("transaction") or {}).get("signatures") or [None])[0]
        if isinstance(inner.get("transaction"), dict)
        else None,
        wrapped.get("signature"),
        (tx.get("signatures") or [None])[0] if isinstance(tx.get("signatures"), list) else None,
    ]
    for sig in candidates:
        if isinstance(sig, str) and sig:
            return sig
    return ""


class IndexerClient:
    """Paginated reader for an address's enriched transaction history."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        timeout_sec: float = 30.0,
    ) -> None:
        if not (1 <= page_size <= 100):
            raise ValueError("page_size must be between 1 and 100")
        if max_pages < 1:
            raise ValueError("max_pages must be positive")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))
        self._page_size = page_size
        self._max_pages = max_pages

    async def __aenter__(self) -> "IndexerClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _fetch_page(self, address: str, before: str | None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"api-key": self._api_key, "limit": self._page_size}
        if before:
            params["before"] = before
        resp = await self._client.get(f"{self._base_url}/addresses/{address}/transactions", params=params)
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict) and data.get("error"):
            raise ValueError(f"indexer error: {data['error']}")
        return extract_transaction_list(data)

    async def fetch_transactions(self, address: str) -> list[dict[str, Any]]:
        """Fetch up to max_pages pages of history, newest first as served by the provider."""
        accumulated: list[dict[str, Any]] = []
        before: str | None = None
        for page in range(self._max_pages):
            try:
                batch = await self._fetch_page(address, before)
            except (httpx.HTTPError, ValueError) as e:
                if page == 0:
                    raise SourceUnavailable(SOURCE_NAME, str(e) or e.__class__.__name__) from e
                logger.warning(
                    "indexer_page_failed",
                    wallet_id=address,
                    page=page,
                    accumulated=len(accumulated),
                    error=str(e),
                )
                break
            accumulated.extend(batch)
            if len(batch) < self._page_size:
                break
            before = transaction_signature(batch[-1])
            if not before:
                break
        logger.debug("indexer_fetch_done", wallet_id=address, transactions=len(accumulated))
        return accumulated
