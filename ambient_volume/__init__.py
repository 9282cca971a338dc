"""
Ambient Volume Bot for Scroll

Rotates USDC, USDT and ETH through the Ambient (CrocSwap) dex across
several wallets until each wallet reaches a randomized volume target.

Usage:
    ambient-volume check
    ambient-volume run
"""

__version__ = "1.0.0"

from .config import Settings, Tunables, validate_environment
from .gateway import ChainGateway, Web3Gateway, connect_gateway
from .bot import VolumeBot
from .trader import SwapExecutor
from .preflight import run_preflight
from .utils import logger, setup_logging
from .errors import ConfigError, GatewayConnectionError, TransactionError

__all__ = [
    "Settings",
    "Tunables",
    "validate_environment",
    "ChainGateway",
    "Web3Gateway",
    "connect_gateway",
    "VolumeBot",
    "SwapExecutor",
    "run_preflight",
    "logger",
    "setup_logging",
    "ConfigError",
    "GatewayConnectionError",
    "TransactionError",
]
