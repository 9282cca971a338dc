"""
Trading Logic Module

Executes swaps on the Ambient (CrocSwap) dex for one wallet session:
native ETH into USDC, and USDC/USDT in either direction. Includes the
approval check and the halve-and-retry policy for rejected swaps.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator, Optional

from .config import Settings, Tunables
from .encoding import NATIVE_TOKEN, build_swap, encode_swap
from .errors import ErrorCategory, TransactionError, classify_error, error_message, is_retryable
from .gateway import ChainGateway, GasParams, MAX_UINT256
from .strategy import SwapDirection
from .utils import logger, truncate, to_base_units, format_tx_hash
from .wallet import WalletSession, read_balances


Pause = Callable[[float], Awaitable[None]]

APPROVAL_THRESHOLD = MAX_UINT256 // 2


class SwapStatus(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    PENDING = "pending"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    INSUFFICIENT_GAS = "insufficient_gas"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    APPROVAL_FAILED = "approval_failed"


@dataclass
class SwapOutcome:
    """Result of one swap request (including any retries)."""
    status: SwapStatus
    direction: SwapDirection
    requested: float
    credited: float = 0.0
    tx_hash: Optional[str] = None
    category: Optional[ErrorCategory] = None
    skip_reason: Optional[SkipReason] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == SwapStatus.CONFIRMED

    @property
    def ends_session(self) -> bool:
        """True when the wallet cannot pay for further transactions."""
        return (self.category == ErrorCategory.FATAL_FUNDING
                or self.skip_reason == SkipReason.INSUFFICIENT_GAS)


def halving_schedule(amount: float, floor: float, max_halvings: int) -> Iterator[float]:
    """
    Amounts to try for one swap: the request, then successive halves.

    A halved amount below ``floor`` is never produced, and at most
    ``max_halvings`` halvings are made, so the sequence is finite and
    strictly decreasing.
    """
    yield amount
    current = amount
    for _ in range(max_halvings):
        current = current / 2
        if current < floor:
            return
        yield current


class SwapExecutor:
    """
    Handles swap operations for wallet sessions.
    """

    def __init__(self, gateway: ChainGateway, settings: Settings, tunables: Tunables,
                 pause: Pause = asyncio.sleep):
        self.gateway = gateway
        self.settings = settings
        self.tunables = tunables
        self.pause = pause

    def _gas_params(self, rng) -> GasParams:
        """Randomized gas limit and legacy gas price."""
        gas_limit = rng.randint(self.tunables.gas_limit_min, self.tunables.gas_limit_max)
        gwei = rng.uniform(self.tunables.gas_price_gwei_min, self.tunables.gas_price_gwei_max)
        return GasParams(gas_limit=gas_limit, gas_price_wei=to_base_units(round(gwei, 4), 9))

    def _token_in(self, direction: SwapDirection) -> str:
        if direction == SwapDirection.USDC_TO_USDT:
            return self.settings.usdc_address
        if direction == SwapDirection.USDT_TO_USDC:
            return self.settings.usdt_address
        return NATIVE_TOKEN

    def _token_out(self, direction: SwapDirection) -> str:
        if direction == SwapDirection.USDC_TO_USDT:
            return self.settings.usdt_address
        return self.settings.usdc_address

    async def ensure_approval(self, session: WalletSession, token: str) -> bool:
        """
        Make sure the dex may spend ``token`` for this wallet.

        Returns True if an approval transaction was sent. Raises
        TransactionError if the approval reverted.
        """
        allowance = await self.gateway.token_allowance(token, session.address, self.settings.dex_address)
        if allowance >= APPROVAL_THRESHOLD:
            logger.debug(f"{session.label} allowance for {token} already sufficient")
            return False

        logger.info(f"{session.label} approving dex to spend {token}...")
        tx_hash = await self.gateway.approve(
            session.account, token, self.settings.dex_address, MAX_UINT256,
            self._gas_params(session.rng)
        )
        receipt = await self.gateway.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionError(f"Approval transaction failed: {format_tx_hash(tx_hash)}")

        logger.info(f"{session.label} approval confirmed: {format_tx_hash(tx_hash)}")
        return True

    async def swap_native_to_stable(self, session: WalletSession) -> SwapOutcome:
        """
        Convert most of the wallet's ETH into USDC.

        A random reserve within the configured bounds stays behind for gas,
        and only 95% of the remainder is swapped.
        """
        direction = SwapDirection.ETH_TO_USDC
        balances = await read_balances(self.gateway, session.address, self.settings)

        reserve = truncate(self.settings.reserve_eth.draw(session.rng), 3)
        spendable = balances.eth - reserve

        if spendable <= self.tunables.gas_floor_eth:
            logger.warning(
                f"{session.label} ETH balance too low to convert: {balances.eth:.6f} ETH, "
                f"reserve {reserve:.6f} ETH"
            )
            return SwapOutcome(SwapStatus.SKIPPED, direction, 0.0,
                               skip_reason=SkipReason.INSUFFICIENT_BALANCE)

        eth_to_swap = truncate(spendable * self.tunables.native_swap_safety, 4)
        value = to_base_units(eth_to_swap, 18)

        logger.info(
            f"{session.label} converting {eth_to_swap:.6f} ETH to USDC, keeping {reserve:.6f} ETH "
            f"(reserve range {self.settings.reserve_eth})"
        )

        command = build_swap(NATIVE_TOKEN, self.settings.usdc_address, value, self.tunables.pool_idx)
        outcome = await self._submit(session, direction, eth_to_swap, command, value=value)
        outcome.attempts = 1
        if outcome.success:
            # Native notional is not USD volume
            outcome.credited = 0.0
            session.native_conversions += 1
        return outcome

    async def swap_stable(self, session: WalletSession, direction: SwapDirection,
                          amount: float) -> SwapOutcome:
        """
        Swap ``amount`` (jittered) of one stable into the other.

        Contract rejections are retried with half the amount, as long as
        the halved amount stays at or above the retry floor.
        """
        if not direction.is_stable:
            raise ValueError(f"{direction} is not a stable swap")

        token_in = self._token_in(direction)
        token_out = self._token_out(direction)
        symbol_in = direction.value.split()[0]

        outcome = SwapOutcome(SwapStatus.FAILED, direction, amount)
        attempts = 0

        for requested in halving_schedule(amount, self.tunables.retry_floor, self.tunables.max_halvings):
            if attempts:
                logger.info(f"{session.label} retrying with reduced amount {requested:.2f} {symbol_in}")
                await self.pause(self.tunables.retry_pause_seconds)
            attempts += 1

            balances = await read_balances(self.gateway, session.address, self.settings)

            if balances.eth < self.tunables.gas_floor_eth:
                logger.error(f"{session.label} ETH balance too low for gas: {balances.eth:.6f}")
                outcome = SwapOutcome(SwapStatus.SKIPPED, direction, requested,
                                      skip_reason=SkipReason.INSUFFICIENT_GAS)
                break

            if direction == SwapDirection.USDC_TO_USDT:
                available, decimals = balances.usdc, balances.usdc_decimals
            else:
                available, decimals = balances.usdt, balances.usdt_decimals

            if available < requested:
                logger.error(
                    f"{session.label} {symbol_in} balance too low: need {requested:.2f}, "
                    f"have {available:.2f}"
                )
                outcome = SwapOutcome(SwapStatus.SKIPPED, direction, requested,
                                      skip_reason=SkipReason.INSUFFICIENT_BALANCE)
                break

            factor = session.rng.uniform(*self.tunables.amount_jitter)
            safe_amount = min(truncate(requested * factor, 2), truncate(available, 2))
            if safe_amount <= 0:
                outcome = SwapOutcome(SwapStatus.SKIPPED, direction, requested,
                                      skip_reason=SkipReason.INSUFFICIENT_BALANCE)
                break

            try:
                await self.ensure_approval(session, token_in)
            except Exception as e:
                logger.error(f"{session.label} approval failed: {error_message(e)[:150]}")
                outcome = SwapOutcome(SwapStatus.SKIPPED, direction, requested,
                                      skip_reason=SkipReason.APPROVAL_FAILED,
                                      category=classify_error(e), error=error_message(e))
                break

            logger.info(f"{session.label} swapping {safe_amount:.2f} {direction.value}")

            offset = session.rng.randrange(self.tunables.limit_price_jitter)
            command = build_swap(token_in, token_out, to_base_units(safe_amount, decimals),
                                 self.tunables.pool_idx, limit_offset=offset)
            outcome = await self._submit(session, direction, safe_amount, command)
            outcome.requested = requested

            if outcome.status != SwapStatus.FAILED or not is_retryable(outcome.category):
                break

        outcome.attempts = attempts
        return outcome

    async def _submit(self, session: WalletSession, direction: SwapDirection,
                      amount: float, command, value: int = 0) -> SwapOutcome:
        """Send one userCmd, wait for it and classify the result."""
        try:
            tx_hash = await self.gateway.user_cmd(
                session.account,
                self.settings.dex_address,
                self.tunables.callpath,
                encode_swap(command),
                self._gas_params(session.rng),
                value=value,
            )
            logger.info(f"{session.label} transaction submitted: {format_tx_hash(tx_hash)}")
            receipt = await self.gateway.wait_for_receipt(tx_hash)
        except Exception as e:
            category = classify_error(e)
            message = error_message(e)
            logger.error(f"{session.label} {direction.value} failed ({category.value}): {message[:150]}")
            if category == ErrorCategory.FATAL_FUNDING:
                logger.error(f"{session.label} not enough ETH to pay fees, top up the wallet")
            status = SwapStatus.PENDING if category == ErrorCategory.PENDING else SwapStatus.FAILED
            return SwapOutcome(status, direction, amount, category=category, error=message)

        if receipt.succeeded:
            logger.info(f"{session.label} {direction.value} confirmed: {format_tx_hash(tx_hash)}")
            return SwapOutcome(SwapStatus.CONFIRMED, direction, amount, credited=amount, tx_hash=tx_hash)

        logger.error(f"{session.label} {direction.value} reverted on chain: {format_tx_hash(tx_hash)}")
        return SwapOutcome(SwapStatus.REVERTED, direction, amount, tx_hash=tx_hash)
