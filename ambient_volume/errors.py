"""
Error types and submission-error classification.

classify_error() is the one place that decides what a failed contract
submission means for the bot. Structured web3 exception types are checked
first; the node's message text is matched against MESSAGE_RULES only when
the exception carries nothing better.
"""

import asyncio
from enum import Enum
from typing import List, Sequence, Tuple

from web3.exceptions import ContractLogicError, TimeExhausted


class ConfigError(Exception):
    """Raised when the environment configuration is invalid."""

    def __init__(self, errors: Sequence[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class GatewayConnectionError(Exception):
    """Raised when neither the primary nor the backup RPC is reachable."""
    pass


class TransactionError(Exception):
    """Custom exception for transaction failures."""
    pass


class ErrorCategory(str, Enum):
    FATAL_FUNDING = "fatal_funding"
    CONTRACT_REJECTION = "contract_rejection"
    PENDING = "pending"
    TRANSPORT = "transport"
    UNCLASSIFIED = "unclassified"


# Lower-cased substrings, checked in order
MESSAGE_RULES: Tuple[Tuple[str, ErrorCategory], ...] = (
    ("insufficient funds", ErrorCategory.FATAL_FUNDING),
    ("execution reverted", ErrorCategory.CONTRACT_REJECTION),
    ("gas required", ErrorCategory.CONTRACT_REJECTION),
    ("always failing transaction", ErrorCategory.CONTRACT_REJECTION),
    ("transaction failed", ErrorCategory.CONTRACT_REJECTION),
)

RETRYABLE = frozenset({ErrorCategory.CONTRACT_REJECTION})


def error_message(exc: BaseException) -> str:
    """
    Extract a readable message from an exception.

    Nodes report JSON-RPC failures as ``ValueError({"code": ..., "message": ...})``;
    those are unwrapped to the message text.
    """
    if exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]
        message = payload.get("message")
        if message:
            return str(message)
    text = str(exc)
    return text or exc.__class__.__name__


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map a submission failure onto the bot's error taxonomy."""
    # Funding problems can be wrapped in a ContractLogicError by some nodes
    message = error_message(exc).lower()
    if "insufficient funds" in message:
        return ErrorCategory.FATAL_FUNDING

    if isinstance(exc, ContractLogicError):
        return ErrorCategory.CONTRACT_REJECTION
    if isinstance(exc, TimeExhausted):
        return ErrorCategory.PENDING

    for needle, category in MESSAGE_RULES:
        if needle in message:
            return category

    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return ErrorCategory.TRANSPORT

    return ErrorCategory.UNCLASSIFIED


def is_retryable(category: ErrorCategory) -> bool:
    return category in RETRYABLE
