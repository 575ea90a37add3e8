"""
Test that capsule_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from capsule_logging and use the logger."""
    from capsule_ledger.capsule_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", wallet_id="wallet", signature="sig")


def test_bind_wallet_logger():
    from capsule_ledger.capsule_logging import bind_wallet

    logger = bind_wallet("9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka")
    logger.warning("source_unavailable", source="indexer_api", error="timeout")


def test_signatures_shortened_in_log_records():
    from capsule_ledger.capsule_logging.logger import SIGNATURE_PREFIX_LEN, shorten_signatures

    sig = "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
    event = shorten_signatures(None, "info", {"signature": sig, "execution_signature": None, "wallet_id": sig})
    assert event["signature"] == sig[:SIGNATURE_PREFIX_LEN]
    assert event["execution_signature"] is None
    # Only signature keys are shortened
    assert event["wallet_id"] == sig


def test_api_keys_redacted_in_log_records():
    from capsule_ledger.capsule_logging.logger import redact_api_keys

    event = redact_api_keys(
        None,
        "warning",
        {
            "error": "Client error '401' for url 'https://api.helius.xyz/v0/addresses/x/transactions?api-key=secret123&limit=100'",
            "rpc_url": "https://devnet.helius-rpc.com/?api_key=abc",
            "attempt": 2,
        },
    )
    assert "secret123" not in event["error"]
    assert "api-key=***&limit=100" in event["error"]
    assert event["rpc_url"] == "https://devnet.helius-rpc.com/?api_key=***"
    assert event["attempt"] == 2
