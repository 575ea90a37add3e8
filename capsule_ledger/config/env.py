"""
Environment variable loading and validation for Capsule Ledger.

- SOLANA_NETWORK: devnet | mainnet (default: devnet)
- SOLANA_RPC_URL: RPC endpoint (read from .env)
- HELIUS_API_KEY: Helius API key (RPC fallback and enhanced transactions API)
- CAPSULE_PROGRAM_ID: Deployed intent capsule program ID
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is capsule_ledger/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
HELIUS_DEVNET_URL_TEMPLATE = "https://devnet.helius-rpc.com/?api-key={key}"
HELIUS_MAINNET_API_BASE = "https://api.helius.xyz/v0"
HELIUS_DEVNET_API_BASE = "https://api-devnet.helius.xyz/v0"
COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

_COMMITMENTS = ("processed", "confirmed", "finalized")


def load_capsule_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_solana_network() -> str:
    """
    Return SOLANA_NETWORK from env: devnet | mainnet.
    Default: devnet.
    """
    load_capsule_env()
    raw = (os.getenv("SOLANA_NETWORK") or os.getenv("SOLANA_CLUSTER") or "devnet").strip().lower()
    if raw in ("mainnet", "mainnet-beta"):
        return "mainnet"
    return "devnet"


def get_helius_api_key() -> str:
    load_capsule_env()
    return _env("HELIUS_API_KEY")


def get_solana_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL > HELIUS_API_KEY (network-specific) > devnet/mainnet default.
    """
    load_capsule_env()
    url = _env("SOLANA_RPC_URL")
    if url:
        return url
    key = get_helius_api_key()
    network = get_solana_network()
    if key:
        if network == "devnet":
            return HELIUS_DEVNET_URL_TEMPLATE.format(key=key)
        return HELIUS_MAINNET_URL_TEMPLATE.format(key=key)
    return DEVNET_RPC_URL if network == "devnet" else MAINNET_RPC_URL


def get_indexer_base_url() -> str:
    """HELIUS_API_BASE_URL, or the enhanced transactions API base for the current network."""
    load_capsule_env()
    url = _env("HELIUS_API_BASE_URL")
    if url:
        return url.rstrip("/")
    return HELIUS_DEVNET_API_BASE if get_solana_network() == "devnet" else HELIUS_MAINNET_API_BASE


def get_capsule_program_id() -> str:
    """
    Return CAPSULE_PROGRAM_ID from env; empty when not configured.
    Program scans and classification degrade to empty results without it.
    """
    load_capsule_env()
    return _env("CAPSULE_PROGRAM_ID")


def get_commitment() -> str:
    """RPC_COMMITMENT (processed | confirmed | finalized); default confirmed."""
    load_capsule_env()
    raw = _env("RPC_COMMITMENT", "confirmed").lower()
    return raw if raw in _COMMITMENTS else "confirmed"


def mask_api_key(url: str) -> str:
    """Mask api-key query values before logging a URL."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
