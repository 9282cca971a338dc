"""
Command line entry point.

    ambient-volume run      start the volume bot
    ambient-volume check    run the preflight checks only
    ambient-volume init-config  write a tunables YAML with the defaults
"""

import argparse
import asyncio
import os
import random
import sys
from pathlib import Path

from .bot import VolumeBot, render_summary, show_banner
from .config import DEFAULT_TUNABLES_YAML, Settings, Tunables, load_env_file
from .errors import ConfigError, GatewayConnectionError
from .gateway import connect_gateway
from .preflight import run_preflight
from .utils import console, logger, setup_logging


def _load_tunables(args) -> Tunables:
    tunables = Tunables.load(args.config)
    if args.log_level:
        tunables.log_level = args.log_level
    if args.log_file:
        tunables.log_file = args.log_file
    return tunables


async def _run_bot(settings: Settings, tunables: Tunables, seed=None):
    try:
        gateway, _ = await connect_gateway(
            settings.rpc_url,
            settings.backup_rpc_url,
            timeout=tunables.rpc_timeout_seconds,
            receipt_timeout=tunables.receipt_timeout_seconds,
            gas_estimate_buffer=tunables.gas_estimate_buffer,
        )
    except GatewayConnectionError as e:
        logger.error(f"Could not connect to any RPC endpoint: {e}")
        return None

    bot = VolumeBot(settings, tunables, gateway, rng=random.Random(seed))
    return await bot.run()


def run_command(args) -> int:
    load_env_file(args.env_file)
    tunables = _load_tunables(args)
    setup_logging(tunables.log_level, tunables.log_file)

    try:
        settings = Settings.from_env(os.environ)
    except ConfigError as e:
        for problem in e.errors:
            logger.error(f"Config error: {problem}")
        logger.error("Fix your .env file or run 'ambient-volume check' for details")
        return 0

    show_banner(settings)

    try:
        sessions = asyncio.run(_run_bot(settings, tunables, seed=args.seed))
    except KeyboardInterrupt:
        console.print("\n[yellow]Bot stopped by user[/yellow]")
        return 130

    # None means no RPC endpoint answered; already logged
    if sessions:
        console.print(render_summary(sessions))
    return 0


def check_command(args) -> int:
    load_env_file(args.env_file)
    tunables = _load_tunables(args)
    setup_logging(tunables.log_level, tunables.log_file)

    ok = asyncio.run(run_preflight(os.environ, tunables))
    if not ok:
        logger.error("Preflight checks failed, the bot is not ready to run")
    return 0


def init_config_command(args) -> int:
    path = Path(args.output)
    if path.exists() and not args.force:
        console.print(f"[red]{path} already exists (use --force to overwrite)[/red]")
        return 1
    path.write_text(DEFAULT_TUNABLES_YAML + "\n")
    console.print(f"[green]Tunables written to {path}[/green]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ambient (CrocSwap) volume bot for Scroll",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Verify settings, RPC, contracts and wallets
  ambient-volume check

  # Run the bot with a fixed seed and custom tunables
  ambient-volume run --seed 7 --config ./tunables.yaml
        """
    )

    parser.add_argument('--env-file', default=None, help='Path to .env file (default: ./.env)')
    parser.add_argument('--config', default=None, help='Path to tunables YAML')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level override')
    parser.add_argument('--log-file', default=None, help='Log file override')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Start the volume bot')
    run_parser.add_argument('--seed', type=int, default=None, help='Random seed for reproducible runs')

    subparsers.add_parser('check', help='Run preflight checks without trading')

    init_parser = subparsers.add_parser('init-config', help='Write default tunables YAML')
    init_parser.add_argument('--output', default='./tunables.yaml', help='Destination file')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == 'run':
            return run_command(args)
        if args.command == 'check':
            return check_command(args)
        if args.command == 'init-config':
            return init_config_command(args)
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]{e}[/red]")
        return 0

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
