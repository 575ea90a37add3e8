"""
Structured logging for the capsule pipeline.

Every record carries an ISO-8601 UTC timestamp, level, event_type and the
logger name, plus whatever context the caller passes (wallet_id, signature,
source, error). Two processors keep that context readable and safe to ship:

- transaction signatures (88 base58 chars) are shortened to a fixed prefix,
  so callers can pass the full signature;
- API keys embedded in URLs or error strings (``api-key=...``) are masked.

structlog and the standard library only; nothing from capsule_ledger is
imported here so any module can log during import.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json for aggregation, anything else renders for a terminal
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

SIGNATURE_PREFIX_LEN = 16
SIGNATURE_KEYS = frozenset({"signature", "creation_signature", "execution_signature"})

_API_KEY_PATTERN = re.compile(r"(api[-_]key=)[^&\s\"']+", re.IGNORECASE)


def _add_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Rename structlog 'event' to event_type; keep message if present."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def shorten_signatures(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SIGNATURE_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and len(value) > SIGNATURE_PREFIX_LEN:
            event_dict[key] = value[:SIGNATURE_PREFIX_LEN]
    return event_dict


def redact_api_keys(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, str) and "key=" in value.lower():
            event_dict[key] = _API_KEY_PATTERN.sub(r"\1***", value)
    return event_dict


def configure_structlog() -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _normalize_event,
        shorten_signatures,
        redact_api_keys,
    ]
    if LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Structured logger bound to the module name.

        logger = get_logger(__name__)
        logger.info("ledger_reconciled", wallet_id=addr, entries=12)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_wallet(wallet_id: str) -> structlog.BoundLogger:
    """Logger with wallet_id on every record, for per-wallet passes."""
    return get_logger("capsule_ledger.wallet").bind(wallet_id=wallet_id)
