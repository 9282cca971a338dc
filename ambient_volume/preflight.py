"""
Preflight Checks
================
Verifies everything the bot needs before any trade is made:

1. environment configuration
2. RPC connectivity (primary, then backup)
3. the two stable token contracts
4. the dex contract
5. every configured wallet

Stages run in order and the first failing stage stops the check. Nothing
is ever signed or sent.
"""

from typing import Mapping, Optional

from eth_account import Account
from rich import box
from rich.table import Table

from .config import Settings, Tunables, validate_environment
from .errors import ConfigError, GatewayConnectionError
from .gateway import ChainGateway, Web3Gateway, connect_gateway
from .utils import console, logger, strip_key_prefix, format_usd, format_eth
from .wallet import read_balances

LOW_GAS_WARNING_ETH = 0.001


def check_config(env: Mapping[str, str]) -> bool:
    logger.info("==================== Environment ====================")
    report = validate_environment(env)
    for problem in report.errors:
        logger.error(f"Config error: {problem}")

    if not report.ok:
        logger.error("Fix the settings above in your .env file")
        return False

    labels = {
        "volume target": lambda r: f"Volume target range: {format_usd(r.low)} - {format_usd(r.high)}",
        "single swap amount": lambda r: f"Single swap range: {format_usd(r.low)} - {format_usd(r.high)}",
        "time interval": lambda r: f"Swap interval: {r.low:g} - {r.high:g} seconds",
        "ETH reserve": lambda r: f"ETH reserve range: {r.low:g} - {r.high:g} ETH",
    }
    for label, describe in labels.items():
        logger.info(describe(report.ranges[label]))

    logger.info("All settings present and valid")
    return True


async def check_rpc(settings: Settings, tunables: Tunables, factory=Web3Gateway) -> Optional[ChainGateway]:
    logger.info("==================== RPC ====================")
    try:
        gateway, info = await connect_gateway(
            settings.rpc_url,
            settings.backup_rpc_url,
            timeout=tunables.rpc_timeout_seconds,
            receipt_timeout=tunables.receipt_timeout_seconds,
            factory=factory,
        )
    except GatewayConnectionError as e:
        logger.error(f"No RPC endpoint reachable: {e}")
        return None

    if info.chain_id != tunables.chain_id:
        logger.warning(f"Connected to chain id {info.chain_id}, expected {tunables.chain_id}")
    else:
        logger.info(f"Confirmed expected network (chain id {info.chain_id})")
    return gateway


async def check_tokens(gateway: ChainGateway, settings: Settings) -> bool:
    logger.info("==================== Token contracts ====================")
    try:
        for label, address in (("USDC", settings.usdc_address), ("USDT", settings.usdt_address)):
            info = await gateway.token_info(address)
            logger.info(f"{label} contract OK: {info.name} ({info.symbol}), {info.decimals} decimals")
    except Exception as e:
        logger.error(f"Token contract check failed: {e}")
        logger.error("Check USDC_ADDRESS and USDT_ADDRESS for this network")
        return False
    return True


async def check_dex(gateway: ChainGateway, settings: Settings) -> bool:
    logger.info("==================== Dex contract ====================")
    logger.info(f"Checking dex contract {settings.dex_address}")
    try:
        if not await gateway.has_code(settings.dex_address):
            logger.error("No contract code at CROC_SWAP_DEX, check the address")
            return False
    except Exception as e:
        logger.error(f"Dex contract check failed: {e}")
        return False

    logger.info("Dex contract found")
    return True


async def check_wallets(gateway: ChainGateway, settings: Settings) -> bool:
    logger.info("==================== Wallets ====================")
    keys = settings.private_keys
    logger.info(f"Found {len(keys)} private keys")

    table = Table(title="Wallets", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Address", style="cyan")
    table.add_column("ETH", justify="right")
    table.add_column("USDC", justify="right")
    table.add_column("USDT", justify="right")
    table.add_column("Approvals")

    valid = 0
    for index, key in enumerate(keys):
        try:
            account = Account.from_key("0x" + strip_key_prefix(key))
            balances = await read_balances(gateway, account.address, settings, include_allowances=True)
        except Exception as e:
            logger.error(f"Wallet {index + 1} check failed: {e.__class__.__name__}: {e}")
            continue

        logger.info(f"Wallet {index + 1}: {account.address} - {balances.describe()}")
        if balances.eth < LOW_GAS_WARNING_ETH:
            logger.warning(f"Wallet {index + 1}: ETH balance may not cover gas")

        approvals = []
        for symbol, allowance in (("USDC", balances.usdc_allowance), ("USDT", balances.usdt_allowance)):
            if allowance > 0:
                logger.info(f"Wallet {index + 1}: {symbol} already approved for the dex")
                approvals.append(f"{symbol} ok")
            else:
                logger.info(f"Wallet {index + 1}: {symbol} not approved yet, the bot approves it on first use")
                approvals.append(f"{symbol} pending")

        table.add_row(
            str(index + 1), account.address, format_eth(balances.eth),
            f"{balances.usdc:.2f}", f"{balances.usdt:.2f}", ", ".join(approvals)
        )
        valid += 1

    if valid:
        console.print(table)

    if valid == 0:
        logger.error("Every wallet check failed, check PRIVATE_KEYS")
        return False

    logger.info(f"{valid}/{len(keys)} wallets usable")
    return True


async def run_preflight(env: Mapping[str, str], tunables: Optional[Tunables] = None,
                        factory=Web3Gateway) -> bool:
    """Run all checks in order; returns True when the bot is ready to run."""
    tunables = tunables or Tunables()
    logger.info("Starting preflight checks...")

    if not check_config(env):
        logger.error("Environment check failed, fix the errors above and retry")
        return False

    try:
        settings = Settings.from_env(env)
    except ConfigError as e:
        logger.error(f"Environment check failed: {e}")
        return False

    gateway = await check_rpc(settings, tunables, factory=factory)
    if gateway is None:
        logger.error("RPC check failed, fix the errors above and retry")
        return False

    if not await check_tokens(gateway, settings):
        logger.error("Token contract check failed, fix the errors above and retry")
        return False

    if not await check_dex(gateway, settings):
        logger.error("Dex contract check failed, fix the errors above and retry")
        return False

    if not await check_wallets(gateway, settings):
        logger.error("Wallet check failed, fix the errors above and retry")
        return False

    logger.info("All checks passed, the bot is ready to run")
    return True
