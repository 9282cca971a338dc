"""
Tests for SwapExecutor: approvals, native conversion and halve-and-retry.
"""

import asyncio

import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from ambient_volume.encoding import NATIVE_TOKEN
from ambient_volume.errors import ErrorCategory
from ambient_volume.strategy import SwapDirection
from ambient_volume.trader import SkipReason, SwapExecutor, SwapStatus, halving_schedule

from conftest import USDC, USDT, no_pause


def run(coro):
    return asyncio.run(coro)


class TestHalvingSchedule:

    def test_stops_before_floor(self):
        assert list(halving_schedule(10, 2, 8)) == [10, 5, 2.5]

    def test_amount_below_floor_tried_once(self):
        assert list(halving_schedule(1.5, 2, 8)) == [1.5]

    def test_bounded_by_max_halvings(self):
        assert list(halving_schedule(1024, 0.001, 3)) == [1024, 512, 256, 128]

    def test_strictly_decreasing(self):
        amounts = list(halving_schedule(97.3, 2, 50))
        assert all(a > b for a, b in zip(amounts, amounts[1:]))
        assert all(a >= 2 for a in amounts[1:])


@pytest.fixture
def executor(gateway, settings, tunables):
    return SwapExecutor(gateway, settings, tunables, pause=no_pause)


class TestEnsureApproval:

    def test_approves_once(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01)

        assert run(executor.ensure_approval(session, USDC)) is True
        assert run(executor.ensure_approval(session, USDC)) is False
        assert gateway.approvals == [(Web3.to_checksum_address(USDC), session.address)]


class TestSwapStable:

    def test_confirmed_swap_credits_amount(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=50)

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.status == SwapStatus.CONFIRMED
        assert outcome.attempts == 1
        assert 9.5 <= outcome.credited <= 10.5
        assert gateway.stable(USDT, session.address) == pytest.approx(outcome.credited)
        assert len(gateway.swaps) == 1
        assert gateway.swaps[0].is_buy

    def test_usdt_to_usdc_pays_quote(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdt=50)

        outcome = run(executor.swap_stable(session, SwapDirection.USDT_TO_USDC, 8))

        assert outcome.success
        cmd = gateway.swaps[0]
        assert not cmd.is_buy and not cmd.in_base_qty
        assert gateway.stable(USDC, session.address) == pytest.approx(outcome.credited)

    def test_rejection_halves_until_floor(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=50)
        gateway.user_cmd_error = ContractLogicError("execution reverted")

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.status == SwapStatus.FAILED
        assert outcome.category == ErrorCategory.CONTRACT_REJECTION
        assert outcome.attempts == 3
        assert outcome.requested == 2.5
        assert outcome.credited == 0

    def test_rejection_then_success(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=50)
        gateway.user_cmd_errors = [ValueError("gas required exceeds allowance")]

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.success
        assert outcome.attempts == 2
        assert outcome.requested == 5
        assert 4.75 <= outcome.credited <= 5.25

    def test_insufficient_funds_not_retried(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=50)
        gateway.user_cmd_error = ValueError({"code": -32000, "message": "insufficient funds for gas"})

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.status == SwapStatus.FAILED
        assert outcome.category == ErrorCategory.FATAL_FUNDING
        assert outcome.attempts == 1
        assert outcome.ends_session

    def test_receipt_timeout_is_pending(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=50)
        gateway.user_cmd_error = TimeExhausted("not in chain after 120 seconds")

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.status == SwapStatus.PENDING
        assert outcome.attempts == 1
        assert not outcome.success

    def test_on_chain_revert_not_retried(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=50)
        gateway.revert_swaps = True

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.status == SwapStatus.REVERTED
        assert outcome.attempts == 1
        assert outcome.credited == 0
        assert outcome.tx_hash is not None

    def test_gas_floor_skips(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.0001, usdc=50)

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.status == SwapStatus.SKIPPED
        assert outcome.skip_reason == SkipReason.INSUFFICIENT_GAS
        assert outcome.ends_session
        assert gateway.swaps == []

    def test_short_balance_skips(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdc=4)

        outcome = run(executor.swap_stable(session, SwapDirection.USDC_TO_USDT, 10))

        assert outcome.skip_reason == SkipReason.INSUFFICIENT_BALANCE
        assert not outcome.ends_session
        assert gateway.swaps == []

    def test_never_spends_more_than_balance(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.01, usdt=10)

        outcome = run(executor.swap_stable(session, SwapDirection.USDT_TO_USDC, 10))

        assert outcome.success
        assert outcome.credited <= 10
        assert gateway.stable(USDT, session.address) >= 0

    def test_rejects_native_direction(self, executor, session):
        with pytest.raises(ValueError):
            run(executor.swap_stable(session, SwapDirection.ETH_TO_USDC, 10))


class TestSwapNativeToStable:

    def test_keeps_reserve(self, executor, gateway, session, settings):
        gateway.fund(session.address, eth=0.01)

        outcome = run(executor.swap_native_to_stable(session))

        assert outcome.success
        assert outcome.credited == 0
        assert session.native_conversions == 1

        cmd = gateway.swaps[0]
        assert cmd.base == NATIVE_TOKEN
        swapped = cmd.qty / 10**18
        # 95% of (balance - reserve), reserve drawn from 0.001 - 0.002
        assert 0.95 * (0.01 - 0.002) - 0.0001 <= swapped <= 0.95 * (0.01 - 0.001)
        remaining = gateway.native[session.address] / 10**18
        assert remaining >= settings.reserve_eth.low
        assert gateway.stable(USDC, session.address) > 0

    def test_too_little_eth(self, executor, gateway, session):
        gateway.fund(session.address, eth=0.0014)

        outcome = run(executor.swap_native_to_stable(session))

        assert outcome.status == SwapStatus.SKIPPED
        assert outcome.skip_reason == SkipReason.INSUFFICIENT_BALANCE
        assert session.native_conversions == 0
        assert gateway.swaps == []
