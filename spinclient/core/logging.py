"""Logging setup for the spin client.

Staging and production emit one JSON object per line; development gets a
short coloured line. Orchestrator records carry an ``operation`` attribute
(refresh/spin/decrypt) and, where known, chain, contract, transaction hash
and handle. Both formatters render them.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

# Extra record attributes rendered when present
CONTEXT_FIELDS = ("operation", "chain_id", "contract_address", "tx_hash", "handle")

NOISY_LOGGERS = ("httpcore", "httpx", "asyncio", "redis")


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Context fields set on ``record``, skipping empty ones."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) not in (None, "")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))

        if record.exc_info and record.exc_info[1]:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Coloured single-line output, operation first."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = record_context(record)
        operation = context.pop("operation", None)

        ts = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        parts = [f"{color}{ts} {record.levelname[0]}{self.RESET}", record.name + ":"]
        if operation:
            parts.append(f"[{operation}]")
        parts.append(record.getMessage())
        if context:
            details = " ".join(f"{k}={v}" for k, v in context.items())
            parts.append(f"{self.DIM}({details}){self.RESET}")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    env: str = "development", log_level: str = "INFO", stream: IO[str] | None = None
) -> logging.Handler:
    """Install a single root handler and return it.

    Args:
        env: development, staging or production
        log_level: Minimum level name, case-insensitive
        stream: Output stream, stdout by default
    """
    level = _level(log_level)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if env in ("staging", "production") else DevFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


class OperationLogFilter(logging.Filter):
    """Stamps a session's chain and contract onto records that lack them."""

    def __init__(self, chain_id: int | None = None, contract_address: str = "") -> None:
        super().__init__()
        self.chain_id = chain_id
        self.contract_address = contract_address

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "chain_id", None) is None:
            record.chain_id = self.chain_id  # type: ignore[attr-defined]
        if not getattr(record, "contract_address", None):
            record.contract_address = self.contract_address  # type: ignore[attr-defined]
        return True
