"""
Wallet Module
=============
One WalletSession per configured private key, plus balance snapshots.

A session owns everything mutable about its wallet (volume counters,
swap statistics, its random generator), so concurrently running
sessions never share state.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import Settings, Tunables
from .gateway import ChainGateway
from .utils import logger, strip_key_prefix, from_base_units, format_address, format_usd


class SessionState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    TRADING = "trading"
    EXHAUSTED = "exhausted"
    TARGET_REACHED = "target_reached"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.EXHAUSTED, SessionState.TARGET_REACHED, SessionState.ERRORED)


@dataclass
class WalletSession:
    """Per-wallet trading state for one run."""
    index: int
    account: LocalAccount
    base_target: float
    target_volume: float
    direction_preference: float
    rng: random.Random
    accumulated_volume: float = 0.0
    state: SessionState = SessionState.BOOTSTRAPPING
    swaps_attempted: int = 0
    swaps_succeeded: int = 0
    swaps_failed: int = 0
    native_conversions: int = 0
    conversions_skipped: int = 0
    consecutive_failures: int = 0
    credited: List[float] = field(default_factory=list)
    exit_reason: Optional[str] = None

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def label(self) -> str:
        return f"Wallet {self.index + 1} ({format_address(self.address, 4)})"

    @property
    def target_reached(self) -> bool:
        return self.accumulated_volume >= self.target_volume

    @property
    def has_traded(self) -> bool:
        return bool(self.credited)

    def credit(self, amount: float) -> float:
        """Add confirmed swap notional to the wallet's volume."""
        if amount <= 0:
            raise ValueError(f"Credited volume must be positive, got {amount}")
        self.accumulated_volume += amount
        self.credited.append(amount)
        self.swaps_succeeded += 1
        self.consecutive_failures = 0
        return self.accumulated_volume

    def record_failure(self, counted: bool = True):
        """Note a failed iteration; ``counted`` failures also show up in swaps_failed."""
        if counted:
            self.swaps_failed += 1
        self.consecutive_failures += 1

    def finish(self, state: SessionState, reason: str):
        self.state = state
        self.exit_reason = reason


def create_session(index: int, private_key: str, settings: Settings,
                   tunables: Tunables, rng: random.Random) -> WalletSession:
    """
    Build a session for one key.

    Draw order is fixed (child seed, base target, jitter, preference) so a
    seeded generator reproduces the same sessions.
    """
    account = Account.from_key("0x" + strip_key_prefix(private_key))

    session_rng = random.Random(rng.getrandbits(64))
    base_target = settings.target_volume.draw(session_rng)
    target = base_target * session_rng.uniform(*tunables.target_jitter)
    preference = session_rng.uniform(*tunables.preference_bounds)

    return WalletSession(
        index=index,
        account=account,
        base_target=base_target,
        target_volume=target,
        direction_preference=preference,
        rng=session_rng,
    )


def open_sessions(private_keys: Sequence[str], settings: Settings,
                  tunables: Tunables, rng: random.Random) -> List[WalletSession]:
    """Create a session per key; a bad key is logged and skipped."""
    sessions = []
    for index, key in enumerate(private_keys):
        try:
            session = create_session(index, key, settings, tunables, rng)
        except Exception as e:
            logger.error(f"Wallet {index + 1}: could not load private key ({e.__class__.__name__})")
            continue

        logger.info(
            f"{session.label} target volume {format_usd(session.target_volume)} "
            f"(base {format_usd(session.base_target)}), direction preference "
            f"{session.direction_preference:.2f}"
        )
        sessions.append(session)

    logger.info(f"Loaded {len(sessions)}/{len(private_keys)} wallets")
    return sessions


@dataclass(frozen=True)
class BalanceSnapshot:
    """Point-in-time balances of one wallet."""
    eth: float
    usdc: float
    usdt: float
    eth_raw: int
    usdc_raw: int
    usdt_raw: int
    usdc_decimals: int
    usdt_decimals: int
    usdc_allowance: int = 0
    usdt_allowance: int = 0

    def describe(self) -> str:
        return f"{self.eth:.6f} ETH, {self.usdc:.2f} USDC, {self.usdt:.2f} USDT"


async def read_balances(gateway: ChainGateway, address: str, settings: Settings,
                        include_allowances: bool = False) -> BalanceSnapshot:
    """Read native and stable balances (and optionally allowances) for a wallet."""
    usdc_decimals = await gateway.token_decimals(settings.usdc_address)
    usdt_decimals = await gateway.token_decimals(settings.usdt_address)

    eth_raw = await gateway.native_balance(address)
    usdc_raw = await gateway.token_balance(settings.usdc_address, address)
    usdt_raw = await gateway.token_balance(settings.usdt_address, address)

    usdc_allowance = usdt_allowance = 0
    if include_allowances:
        usdc_allowance = await gateway.token_allowance(settings.usdc_address, address, settings.dex_address)
        usdt_allowance = await gateway.token_allowance(settings.usdt_address, address, settings.dex_address)

    return BalanceSnapshot(
        eth=from_base_units(eth_raw, 18),
        usdc=from_base_units(usdc_raw, usdc_decimals),
        usdt=from_base_units(usdt_raw, usdt_decimals),
        eth_raw=eth_raw,
        usdc_raw=usdc_raw,
        usdt_raw=usdt_raw,
        usdc_decimals=usdc_decimals,
        usdt_decimals=usdt_decimals,
        usdc_allowance=usdc_allowance,
        usdt_allowance=usdt_allowance,
    )
