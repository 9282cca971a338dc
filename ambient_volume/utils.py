"""
Utility Module

Logging setup, log sanitization and number/address formatting helpers.

All bot messages go through one shared logger that writes to the rich
console and appends to a plain text audit file. Messages are sanitized
so private keys never reach either handler.
"""

import os
import re
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for Rich output
console = Console()

LOGGER_NAME = "ambient_volume"


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Node error messages can echo raw transaction data back, and operators
    paste keys into the wrong variable more often than one would hope.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'(?<![0-9a-fA-Fx])(0x)?[a-fA-F0-9]{64}(?![0-9a-fA-F])', '[KEY_REDACTED]'),
        (r'private[_-]?keys?["\']?\s*[:=]\s*\S+', 'private_key=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _sanitize(self, msg) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "./swap_bot_logs.txt") -> SecureLogger:
    """
    Setup logging with rich console output and an append-only log file.

    Returns the shared SecureLogger.
    """
    base = logging.getLogger(LOGGER_NAME)
    base.setLevel(getattr(logging, log_level.upper()))
    base.propagate = False

    # Remove existing handlers
    for handler in list(base.handlers):
        base.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    base.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        base.addHandler(file_handler)

    return logger


# Shared logger; handlers are attached by setup_logging()
logger = SecureLogger(logging.getLogger(LOGGER_NAME))


# Numeric helpers

def truncate(value: float, places: int) -> float:
    """Truncate (not round) a value to a number of decimal places."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_DOWN))


def to_base_units(amount: float, decimals: int) -> int:
    """Convert a human amount to integer token units."""
    return int((Decimal(str(amount)) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(raw: int, decimals: int) -> float:
    """Convert integer token units to a human amount."""
    return float(Decimal(raw) / (Decimal(10) ** decimals))


# Formatting utilities

def format_eth(eth_amount: float) -> str:
    """Format ETH amount with appropriate precision."""
    if eth_amount < 0.001:
        return f"{eth_amount:.6f} ETH"
    elif eth_amount < 1:
        return f"{eth_amount:.4f} ETH"
    else:
        return f"{eth_amount:.2f} ETH"


def format_usd(amount: float) -> str:
    return f"${amount:,.2f}"


def format_address(address: str, length: int = 6) -> str:
    """Format Ethereum address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def format_tx_hash(tx_hash: str, length: int = 10) -> str:
    """Format transaction hash with ellipsis."""
    if len(tx_hash) <= length * 2:
        return tx_hash
    return f"{tx_hash[:length]}...{tx_hash[-length:]}"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


# Key helpers

def strip_key_prefix(key: str) -> str:
    """Remove surrounding whitespace and an optional 0x prefix."""
    key = key.strip()
    if key[:2].lower() == "0x":
        key = key[2:]
    return key

