"""
Volume Bot
==========
Runs one accumulation loop per wallet until each wallet reaches its
volume target or runs out of anything it can swap.

Per wallet the loop is strictly sequential (read balances, decide,
approve, swap, wait for the receipt, pause); wallets run concurrently
and share nothing but the gateway.
"""

import asyncio
import random
from typing import List, Optional

from rich import box
from rich.panel import Panel
from rich.table import Table

from .config import Settings, Tunables
from .gateway import ChainGateway
from .strategy import Action, decide
from .trader import Pause, SkipReason, SwapExecutor, SwapOutcome
from .utils import console, logger, format_usd, format_duration
from .wallet import SessionState, WalletSession, open_sessions, read_balances


class VolumeBot:
    """Main volume bot."""

    def __init__(
        self,
        settings: Settings,
        tunables: Tunables,
        gateway: ChainGateway,
        rng: Optional[random.Random] = None,
        pause: Pause = asyncio.sleep,
    ):
        self.settings = settings
        self.tunables = tunables
        self.gateway = gateway
        self.rng = rng or random.Random()
        self.pause = pause
        self.executor = SwapExecutor(gateway, settings, tunables, pause=pause)
        self.sessions: List[WalletSession] = []

    async def run(self) -> List[WalletSession]:
        """Open every wallet session and run them all to a terminal state."""
        self.sessions = open_sessions(self.settings.private_keys, self.settings, self.tunables, self.rng)
        if not self.sessions:
            logger.error("No usable wallets, nothing to do")
            return []

        await asyncio.gather(*(self.run_session(session) for session in self.sessions))

        logger.info("=== All wallet sessions finished ===")
        return self.sessions

    async def run_session(self, session: WalletSession) -> WalletSession:
        """Run one wallet's loop; an unexpected error ends only this wallet."""
        try:
            await self._bootstrap(session)
            if not session.state.is_terminal:
                await self._trade(session)
        except Exception as e:
            logger.exception(f"{session.label} stopped by unexpected error: {e}")
            session.finish(SessionState.ERRORED, str(e))

        logger.info(
            f"{session.label} finished ({session.state.value}): volume "
            f"{format_usd(session.accumulated_volume)} of {format_usd(session.target_volume)}"
        )
        return session

    async def _bootstrap(self, session: WalletSession):
        """Seed a stable-poor wallet with USDC once before trading."""
        session.state = SessionState.BOOTSTRAPPING
        balances = await read_balances(self.gateway, session.address, self.settings)
        logger.info(f"{session.label} starting balances: {balances.describe()}")

        if balances.eth < self.tunables.gas_floor_eth:
            logger.error(f"{session.label} ETH balance too low for gas, fund the wallet first")
            session.finish(SessionState.EXHAUSTED, "insufficient ETH for gas")
            return

        needs_seed = (
            balances.eth > self.tunables.bootstrap_min_eth
            and balances.usdc < self.tunables.bootstrap_max_stable
            and balances.usdt < self.tunables.bootstrap_max_stable
        )
        if needs_seed:
            logger.info(f"{session.label} holds only ETH, converting most of it to USDC")
            try:
                await self.executor.ensure_approval(session, self.settings.usdc_address)
                await self.executor.ensure_approval(session, self.settings.usdt_address)
            except Exception as e:
                logger.error(f"{session.label} approval during bootstrap failed: {e}")
            else:
                await self.executor.swap_native_to_stable(session)

            await self.pause(session.rng.uniform(*self.tunables.bootstrap_wait_seconds))
            balances = await read_balances(self.gateway, session.address, self.settings)
            logger.info(f"{session.label} balances after seeding: {balances.describe()}")

        session.state = SessionState.TRADING

    async def _trade(self, session: WalletSession):
        """Trade until the target is met or nothing is feasible."""
        allow_top_up = True
        while not session.target_reached:
            balances = await read_balances(self.gateway, session.address, self.settings)

            if balances.eth < self.tunables.gas_floor_eth:
                logger.error(f"{session.label} ETH balance too low, stopping")
                session.finish(SessionState.EXHAUSTED, "insufficient ETH for gas")
                return

            decision = decide(
                balances,
                session.direction_preference,
                session.rng,
                self.settings,
                self.tunables,
                first_swap=not session.has_traded,
                allow_top_up=allow_top_up,
            )

            if decision.action == Action.EXHAUSTED:
                logger.error(f"{session.label} {decision.reason}")
                session.finish(SessionState.EXHAUSTED, decision.reason)
                return

            if decision.action == Action.TOP_UP:
                logger.info(f"{session.label} {decision.reason}")
                outcome = await self.executor.swap_native_to_stable(session)
                if self._settle(session, outcome):
                    return
                if outcome.skip_reason == SkipReason.INSUFFICIENT_BALANCE:
                    # Fall through to the remaining stables next time round
                    allow_top_up = False
                    continue
                await self.pause(session.rng.uniform(*self.tunables.top_up_wait_seconds))
                continue

            if decision.action == Action.USE_REMAINING:
                logger.info(f"{session.label} {decision.reason}: {decision.amount:.2f}")
            else:
                logger.info(f"{session.label} direction {decision.direction.value} ({decision.reason})")

            outcome = await self.executor.swap_stable(session, decision.direction, decision.amount)
            if self._settle(session, outcome):
                return
            if outcome.success:
                allow_top_up = True

            if session.target_reached:
                break

            wait = self.settings.interval_seconds.draw(session.rng)
            logger.info(f"{session.label} waiting {format_duration(wait)} before the next swap...")
            await self.pause(wait)

        session.finish(SessionState.TARGET_REACHED, "target volume reached")
        logger.info(
            f"{session.label} reached target: {format_usd(session.accumulated_volume)} "
            f">= {format_usd(session.target_volume)}"
        )

    def _settle(self, session: WalletSession, outcome: SwapOutcome) -> bool:
        """
        Apply a swap outcome to the session.

        Returns True when the session has to stop.
        """
        if outcome.direction.is_stable:
            session.swaps_attempted += 1

        if outcome.success:
            if outcome.credited > 0:
                total = session.credit(outcome.credited)
                logger.info(
                    f"{session.label} volume {format_usd(total)} / {format_usd(session.target_volume)}"
                )
            else:
                session.consecutive_failures = 0
            return False

        if not outcome.direction.is_stable:
            if outcome.skip_reason == SkipReason.INSUFFICIENT_BALANCE:
                # Nothing was sent
                session.conversions_skipped += 1
                return False
            session.record_failure(counted=False)
        else:
            session.record_failure()

        if outcome.ends_session:
            session.finish(SessionState.EXHAUSTED, "insufficient ETH for fees")
            return True

        if session.consecutive_failures >= self.tunables.max_consecutive_failures:
            logger.error(f"{session.label} {session.consecutive_failures} failed attempts in a row, giving up")
            session.finish(SessionState.EXHAUSTED, "too many consecutive failures")
            return True

        return False


def _conversions(session: WalletSession) -> str:
    if session.conversions_skipped:
        return f"{session.native_conversions} ({session.conversions_skipped} skipped)"
    return str(session.native_conversions)


def render_summary(sessions: List[WalletSession]) -> Table:
    """Build the end-of-run statistics table."""
    table = Table(title="Wallet Summary", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan")
    table.add_column("Target", justify="right")
    table.add_column("Volume", justify="right", style="green")
    table.add_column("Swaps OK", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("ETH conversions", justify="right")
    table.add_column("State")

    for session in sessions:
        table.add_row(
            session.label,
            format_usd(session.target_volume),
            format_usd(session.accumulated_volume),
            str(session.swaps_succeeded),
            str(session.swaps_failed),
            _conversions(session),
            session.state.value,
        )
    return table


def show_banner(settings: Settings):
    lines = "\n".join(f"[dim]{k}:[/dim] {v}" for k, v in settings.describe().items())
    console.print(Panel.fit(
        "[bold cyan]Ambient Volume Bot[/bold cyan]\n" + lines,
        box=box.DOUBLE
    ))
