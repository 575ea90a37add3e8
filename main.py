"""
Main entrypoint: FastAPI server (capsule ledger, dormancy stats) via uvicorn.

The periodic ledger re-check runs inside the server lifespan when
RECHECK_WALLETS is set (comma-separated), every RECHECK_INTERVAL_SEC seconds.

Env: SOLANA_RPC_URL, HELIUS_API_KEY, CAPSULE_PROGRAM_ID, CACHE_DB_PATH, API_HOST, API_PORT, etc.

Equivalent: uvicorn capsule_ledger.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os
import sys

# Configure structured JSON logging before other imports that may log
from capsule_ledger.capsule_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Validate configuration, then run the FastAPI server in the main thread."""
    api_host = os.getenv("API_HOST", "0.0.0.0").strip()
    try:
        api_port = int(os.getenv("API_PORT", "8000").strip() or "8000")
    except ValueError:
        logger.error("main_config_error", message="API_PORT must be an integer")
        sys.exit(1)

    from capsule_ledger.config import get_settings
    from capsule_ledger.config.env import mask_api_key

    settings = get_settings()
    if not settings.program_id:
        logger.warning(
            "main_program_id_missing",
            message="CAPSULE_PROGRAM_ID not set: dormancy stats and capsule lookups will be empty",
        )
    logger.info(
        "main_config_loaded",
        network=settings.network,
        rpc_url=mask_api_key(settings.rpc_url),
        indexer_enabled=settings.indexer_enabled,
        recheck_wallets=len(settings.recheck_wallets),
    )

    from capsule_ledger.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=api_host, port=api_port)
    uvicorn.run(app, host=api_host, port=api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
