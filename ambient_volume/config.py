"""
Configuration Management Module

Two layers:

- ``Settings``: secrets, contract addresses and the operator's numeric
  ranges, read from the environment (a ``.env`` file is loaded first).
- ``Tunables``: non-secret operating constants with sensible defaults,
  optionally overridden from a YAML file.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, asdict, field
from typing import Dict, Any, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv
from web3 import Web3

from .errors import ConfigError

logger = logging.getLogger(__name__)


IDENTIFIER_FIELDS = (
    "RPC_URL",
    "PRIVATE_KEYS",
    "CROC_SWAP_DEX",
    "USDC_ADDRESS",
    "USDT_ADDRESS",
)

ADDRESS_FIELDS = ("CROC_SWAP_DEX", "USDC_ADDRESS", "USDT_ADDRESS")

# (label, min key, max key)
RANGE_FIELDS = (
    ("volume target", "TARGET_TOTAL_VOLUME_MIN", "TARGET_TOTAL_VOLUME_MAX"),
    ("single swap amount", "SINGLE_SWAP_AMOUNT_MIN", "SINGLE_SWAP_AMOUNT_MAX"),
    ("time interval", "TIME_INTERVAL_MIN", "TIME_INTERVAL_MAX"),
    ("ETH reserve", "RESERVE_ETH_MIN", "RESERVE_ETH_MAX"),
)

REQUIRED_FIELDS = IDENTIFIER_FIELDS + tuple(
    key for _, low, high in RANGE_FIELDS for key in (low, high)
)


@dataclass(frozen=True)
class Range:
    """Closed numeric interval [low, high]."""
    low: float
    high: float

    def draw(self, rng) -> float:
        return rng.uniform(self.low, self.high)

    def __str__(self) -> str:
        return f"{self.low:g} - {self.high:g}"


@dataclass
class ValidationReport:
    """Result of validating the environment: overall verdict plus itemized problems."""
    errors: List[str] = field(default_factory=list)
    ranges: Dict[str, Range] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def _parse_positive(env: Mapping[str, str], key: str, errors: List[str]) -> Optional[float]:
    raw = env.get(key)
    if raw is None or not str(raw).strip():
        return None  # reported as missing already
    try:
        value = float(raw)
    except ValueError:
        errors.append(f"{key} must be a number, got {raw!r}")
        return None
    if value != value or value <= 0:
        errors.append(f"{key} must be a positive number, got {raw!r}")
        return None
    return value


def validate_environment(env: Mapping[str, str]) -> ValidationReport:
    """
    Validate the bot's environment.

    Every missing key, non-numeric or non-positive number, inverted range and
    malformed address is reported; validation never stops at the first problem.
    """
    report = ValidationReport()

    for key in REQUIRED_FIELDS:
        value = env.get(key)
        if value is None or not str(value).strip():
            report.errors.append(f"Missing required setting {key}")

    for key in ADDRESS_FIELDS:
        value = (env.get(key) or "").strip()
        if value and not Web3.is_address(value):
            report.errors.append(f"{key} is not a valid address: {value!r}")

    keys = [k for k in (env.get("PRIVATE_KEYS") or "").split(",") if k.strip()]
    if env.get("PRIVATE_KEYS") and not keys:
        report.errors.append("PRIVATE_KEYS contains no usable key")

    for label, low_key, high_key in RANGE_FIELDS:
        low = _parse_positive(env, low_key, report.errors)
        high = _parse_positive(env, high_key, report.errors)
        if low is None or high is None:
            continue
        if low > high:
            report.errors.append(
                f"{low_key} ({low:g}) is greater than {high_key} ({high:g}): invalid {label} range"
            )
            continue
        report.ranges[label] = Range(low, high)

    return report


@dataclass
class Settings:
    """Operator settings read from the environment."""
    rpc_url: str
    private_keys: List[str]
    dex_address: str
    usdc_address: str
    usdt_address: str
    target_volume: Range
    swap_amount: Range
    interval_seconds: Range
    reserve_eth: Range
    backup_rpc_url: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from a mapping (default: os.environ); raises ConfigError."""
        if env is None:
            env = os.environ

        report = validate_environment(env)
        if not report.ok:
            raise ConfigError(report.errors)

        keys = [k.strip() for k in env["PRIVATE_KEYS"].split(",") if k.strip()]
        backup = (env.get("BACKUP_RPC_URL") or "").strip() or None

        return cls(
            rpc_url=env["RPC_URL"].strip(),
            backup_rpc_url=backup,
            private_keys=keys,
            dex_address=Web3.to_checksum_address(env["CROC_SWAP_DEX"].strip()),
            usdc_address=Web3.to_checksum_address(env["USDC_ADDRESS"].strip()),
            usdt_address=Web3.to_checksum_address(env["USDT_ADDRESS"].strip()),
            target_volume=report.ranges["volume target"],
            swap_amount=report.ranges["single swap amount"],
            interval_seconds=report.ranges["time interval"],
            reserve_eth=report.ranges["ETH reserve"],
        )

    def describe(self) -> Dict[str, str]:
        """Non-secret summary for display."""
        return {
            "RPC": self.rpc_url,
            "Backup RPC": self.backup_rpc_url or "-",
            "Wallets": str(len(self.private_keys)),
            "Volume target": f"${self.target_volume}",
            "Swap amount": f"${self.swap_amount}",
            "Interval": f"{self.interval_seconds} s",
            "ETH reserve": f"{self.reserve_eth} ETH",
        }


def load_env_file(env_file: Optional[str] = None) -> bool:
    """Load a .env file into os.environ without overriding existing variables."""
    if env_file:
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@dataclass
class Tunables:
    """Operating constants. Defaults match the Scroll deployment."""

    # Network
    chain_id: int = 534352
    rpc_timeout_seconds: int = 30
    receipt_timeout_seconds: int = 120

    # Exchange
    pool_idx: int = 420
    callpath: int = 1
    limit_price_jitter: int = 463

    # Balance thresholds (native units / stable units)
    gas_floor_eth: float = 0.0005
    top_up_floor_eth: float = 0.001
    bootstrap_min_eth: float = 0.003
    bootstrap_max_stable: float = 5.0
    dust_threshold: float = 0.1
    native_swap_safety: float = 0.95

    # Amount decisions
    first_swap_cap: Tuple[float, float] = (1.0, 3.0)
    target_jitter: Tuple[float, float] = (0.9, 1.1)
    amount_jitter: Tuple[float, float] = (0.95, 1.05)
    preference_bounds: Tuple[float, float] = (0.3, 0.7)
    imbalance_ratio: float = 1.2

    # Retry policy
    retry_floor: float = 2.0
    retry_pause_seconds: float = 3.0
    max_halvings: int = 8
    max_consecutive_failures: int = 10

    # Gas jitter (legacy transactions)
    gas_limit_min: int = 400000
    gas_limit_max: int = 700000
    gas_price_gwei_min: float = 0.05
    gas_price_gwei_max: float = 0.15
    gas_estimate_buffer: float = 1.2

    # Waits
    bootstrap_wait_seconds: Tuple[float, float] = (5.0, 10.0)
    top_up_wait_seconds: Tuple[float, float] = (3.0, 7.0)

    # Logging
    log_file: str = "./swap_bot_logs.txt"
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tunables":
        """Create Tunables from dictionary."""
        # Filter only valid fields
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for name, value in list(valid_fields.items()):
            if isinstance(value, list):
                valid_fields[name] = tuple(value)
        return cls(**valid_fields)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Tunables":
        """Load tunables from a YAML file; a missing path gives the defaults."""
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError([f"{path} must contain a mapping"])

        logger.info(f"Tunables loaded from {path}")
        return cls.from_dict(data)


DEFAULT_TUNABLES_YAML = """
# Ambient volume bot tunables (all optional)
chain_id: 534352
pool_idx: 420
gas_floor_eth: 0.0005
retry_floor: 2.0
retry_pause_seconds: 3
max_consecutive_failures: 10
gas_limit_min: 400000
gas_limit_max: 700000
gas_price_gwei_min: 0.05
gas_price_gwei_max: 0.15
log_file: ./swap_bot_logs.txt
log_level: INFO
""".strip()
