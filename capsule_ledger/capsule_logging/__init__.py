"""
Structured logging for Capsule Ledger.

JSON logs with timestamp, wallet_id, event_type and per-event context.
Use get_logger() in all modules for aggregation-friendly output.
"""

from capsule_ledger.capsule_logging.logger import bind_wallet, get_logger

__all__ = ["bind_wallet", "get_logger"]
