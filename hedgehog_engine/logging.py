"""
Logging configuration for the Hedgehog engine.

Every record carries the instrument the current task is working on, so a
process quoting several symbols still produces readable logs. Request
signatures are scrubbed from messages before they are written: httpx
errors embed the full signed URL.

Two output modes:
- text lines for running in a terminal
- one JSON object per line for log shippers
"""

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Instrument being processed on the current task
current_symbol: ContextVar[str | None] = ContextVar("current_symbol", default=None)

TEXT_FORMAT = "%(timestamp)s | %(levelname)-8s | %(name)s | %(symbol_prefix)s%(message)s"

NOISY_LOGGERS = ("httpx", "httpcore")

_SIGNATURE = re.compile(r"(signature=)[0-9a-fA-F]+")


def scrub_signatures(text: str) -> str:
    """Replace request signature values in `text`."""
    return _SIGNATURE.sub(r"\1[REDACTED]", text)


class SymbolFilter(logging.Filter):
    """Stamp records with the current task's instrument."""

    def filter(self, record: logging.LogRecord) -> bool:
        symbol = current_symbol.get()
        record.symbol = symbol or ""
        record.symbol_prefix = f"[{symbol}] " if symbol else ""
        return True


class EngineFormatter(logging.Formatter):
    """
    Formatter with a millisecond UTC timestamp and signature scrubbing.

    In JSON mode the format string is ignored and each record becomes a
    single JSON object.
    """

    def __init__(self, fmt: str = TEXT_FORMAT, json_output: bool = False) -> None:
        super().__init__(fmt)
        self._json = json_output

    def format(self, record: logging.LogRecord) -> str:
        record.timestamp = datetime.fromtimestamp(record.created, UTC).isoformat(
            timespec="milliseconds"
        )
        if not hasattr(record, "symbol_prefix"):
            SymbolFilter().filter(record)

        if not self._json:
            return scrub_signatures(super().format(record))

        payload = {
            "timestamp": record.timestamp,
            "level": record.levelname,
            "logger": record.name,
            "symbol": record.symbol or None,
            "message": scrub_signatures(record.getMessage()),
        }
        if record.exc_info:
            payload["exception"] = scrub_signatures(self.formatException(record.exc_info))
        return json.dumps(payload)


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Configure logging for the engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output one JSON object per line

    Returns:
        Configured root logger
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(SymbolFilter())
    handler.setFormatter(EngineFormatter(json_output=json_output))
    root.addHandler(handler)

    # Request/response lines are logged by the MEXC client itself
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def set_symbol(symbol: str) -> None:
    """Tag log records from the current task with an instrument symbol."""
    current_symbol.set(symbol)


def clear_symbol() -> None:
    """Clear the instrument tag."""
    current_symbol.set(None)
