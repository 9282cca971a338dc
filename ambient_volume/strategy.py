"""
Direction and amount decisions for one trading iteration.

The decision is a pure function of the balance snapshot, the wallet's
direction preference and the random generator, so tests can pin every
branch with a seeded or scripted generator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import Settings, Tunables
from .utils import truncate
from .wallet import BalanceSnapshot


class SwapDirection(str, Enum):
    USDC_TO_USDT = "USDC -> USDT"
    USDT_TO_USDC = "USDT -> USDC"
    ETH_TO_USDC = "ETH -> USDC"

    @property
    def is_stable(self) -> bool:
        return self is not SwapDirection.ETH_TO_USDC


class Action(str, Enum):
    SWAP = "swap"
    TOP_UP = "top_up"
    USE_REMAINING = "use_remaining"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class Decision:
    action: Action
    direction: Optional[SwapDirection] = None
    amount: float = 0.0
    draw: Optional[float] = None
    reason: str = ""


def draw_swap_amount(rng, settings: Settings, tunables: Tunables, first_swap: bool) -> float:
    """Candidate stable amount for this iteration, truncated to cents."""
    amount = truncate(settings.swap_amount.draw(rng), 2)
    if first_swap:
        # Start small so a misconfigured wallet fails cheaply
        amount = min(amount, rng.uniform(*tunables.first_swap_cap))
    return amount


def can_top_up(snapshot: BalanceSnapshot, settings: Settings, tunables: Tunables) -> bool:
    """True if a native conversion clears the gas floor even with the largest reserve."""
    return (snapshot.eth > tunables.top_up_floor_eth
            and snapshot.eth - settings.reserve_eth.high > tunables.gas_floor_eth)


def decide(snapshot: BalanceSnapshot, preference: float, rng, settings: Settings,
           tunables: Tunables, first_swap: bool = False, allow_top_up: bool = True) -> Decision:
    """Pick what the wallet does next."""
    amount = draw_swap_amount(rng, settings, tunables, first_swap)
    draw = rng.random()

    usdc, usdt = snapshot.usdc, snapshot.usdt

    if usdc >= amount and (usdc > usdt * tunables.imbalance_ratio or draw < preference):
        return Decision(Action.SWAP, SwapDirection.USDC_TO_USDT, amount, draw,
                        f"USDC balance {usdc:.2f}, draw {draw:.2f}")

    if usdt >= amount:
        return Decision(Action.SWAP, SwapDirection.USDT_TO_USDC, amount, draw,
                        f"USDT balance {usdt:.2f}, draw {draw:.2f}")

    if allow_top_up and can_top_up(snapshot, settings, tunables):
        return Decision(Action.TOP_UP, SwapDirection.ETH_TO_USDC, 0.0, draw,
                        f"stable balances below {amount:.2f}, converting ETH ({snapshot.eth:.4f})")

    if usdc >= tunables.dust_threshold or usdt >= tunables.dust_threshold:
        if usdc >= usdt:
            return Decision(Action.USE_REMAINING, SwapDirection.USDC_TO_USDT,
                            truncate(usdc, 2), draw, "swapping remaining USDC")
        return Decision(Action.USE_REMAINING, SwapDirection.USDT_TO_USDC,
                        truncate(usdt, 2), draw, "swapping remaining USDT")

    return Decision(Action.EXHAUSTED, draw=draw,
                    reason=f"all balances too low: {snapshot.describe()}")
