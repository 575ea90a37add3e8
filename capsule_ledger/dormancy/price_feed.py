"""Best-effort USD price from a simple-price endpoint ({asset: {usd: number}})."""

from __future__ import annotations

import math

import httpx

from capsule_ledger.capsule_logging import get_logger
from capsule_ledger.core.exceptions import ExternalFeedUnavailable

logger = get_logger(__name__)

FEED_NAME = "price_feed"


async def fetch_price_usd(client: httpx.AsyncClient, url: str, asset: str = "solana") -> float:
    """Return the asset's USD price; raise ExternalFeedUnavailable on any failure."""
    try:
        resp = await client.get(url, params={"ids": asset, "vs_currencies": "usd"})
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ExternalFeedUnavailable(FEED_NAME, str(e) or e.__class__.__name__) from e
    entry = data.get(asset) if isinstance(data, dict) else None
    price = entry.get("usd") if isinstance(entry, dict) else None
    if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price) or price < 0:
        raise ExternalFeedUnavailable(FEED_NAME, f"no usd price for {asset!r}")
    logger.debug("price_fetched", asset=asset, price_usd=price)
    return float(price)
