#!/usr/bin/env python3
"""
Sui Volume Bot CLI
==================

Runs one of the swap strategies against Sui mainnet through the Cetus
aggregator.

Usage:
    python swap_cli.py balance
    python swap_cli.py swap --amount 10 --batch 3
    python swap_cli.py sweep
    python swap_cli.py roundtrip --target 0x...::coin::COIN
    python swap_cli.py volume --forever
    python swap_cli.py relay --iterations 5

Endpoints and the private key come from the environment (or a .env file):
AGGREGATOR_RPC_URL_MAINNET, FULLNODE_RPC_URL_MAINNET, PRIVATE_KEY_BECH32.
"""

import sys
import signal
import asyncio
import argparse
from pathlib import Path
from typing import Optional

from rich.table import Table
from rich.panel import Panel
from rich import box

from sui_volume_bot import BotContext, Config, create_strategy, setup_logging
from sui_volume_bot.strategies import (
    RelayReport,
    RoundTripReport,
    RunSummary,
    SweepSummary,
    VolumeSummary,
)
from sui_volume_bot.models import SwapOutcome
from sui_volume_bot.utils import (
    console,
    format_address,
    format_duration,
    format_mist,
    format_sui,
    short_asset,
    ConfigError,
)


def print_banner(ctx: BotContext, command: str):
    """Print the run banner."""
    config = ctx.config
    lines = [
        f"Wallet:   {ctx.wallet.address}",
        f"Strategy: {command}",
        f"Base:     {config.base_asset}",
    ]
    if config.target_asset:
        lines.append(f"Target:   {config.target_asset}")
    console.print(Panel("\n".join(lines), title="Sui Volume Bot", style="bold cyan", box=box.DOUBLE))


def install_stop_handlers(stop: asyncio.Event):
    """Ctrl+C / SIGTERM finish the current step and then stop."""
    loop = asyncio.get_running_loop()

    def _request_stop():
        if not stop.is_set():
            console.print("\n[yellow]Stop requested, finishing current step...[/yellow]")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass


def _outcome_row(table: Table, label: str, outcome: SwapOutcome):
    request = outcome.request
    table.add_row(
        label,
        f"{short_asset(request.from_asset)} -> {short_asset(request.to_asset)}",
        str(request.amount),
        format_sui(outcome.gas_used),
        outcome.digest,
    )


def render_summary(summary: RunSummary, elapsed: float):
    """Render a strategy run as rich tables."""
    table = Table(title=f"{summary.strategy} results", box=box.ROUNDED)
    table.add_column("Step", style="cyan")
    table.add_column("Pair")
    table.add_column("Amount", justify="right")
    table.add_column("Gas used", justify="right", style="yellow")
    table.add_column("Digest", style="dim")

    for i, result in enumerate(summary.results, 1):
        if isinstance(result, SwapOutcome):
            _outcome_row(table, f"#{i}", result)
        elif isinstance(result, SweepSummary):
            for outcome in result.successes:
                _outcome_row(table, f"#{i} sweep", outcome)
            for asset, error in result.failures:
                table.add_row(f"#{i} sweep", short_asset(asset), "-", "-", f"[red]{error}[/red]")
            if result.stopped:
                table.add_row(f"#{i} sweep", "-", "-", "-", "[yellow]stopped early[/yellow]")
        elif isinstance(result, RoundTripReport):
            _outcome_row(table, f"#{i} buy", result.buy)
            _outcome_row(table, f"#{i} sell", result.sell)
        elif isinstance(result, VolumeSummary):
            for j, report in enumerate(result.completed, 1):
                _outcome_row(table, f"#{i}.{j} buy", report.buy)
                _outcome_row(table, f"#{i}.{j} sell", report.sell)
            for j, error in result.failures:
                table.add_row(f"#{i}.{j}", "-", "-", "-", f"[red]{error}[/red]")
            if result.stopped:
                table.add_row(f"#{i} volume", "-", "-", "-", "[yellow]stopped early[/yellow]")
        elif isinstance(result, RelayReport):
            _outcome_row(table, f"#{i} {format_address(result.wallet_address)}", result.swap)

    console.print(table)

    stats = Table(box=box.SIMPLE)
    stats.add_column("Metric", style="cyan")
    stats.add_column("Value", style="green")
    stats.add_row("Iterations", str(summary.iterations))
    stats.add_row("Succeeded", str(len(summary.results)))
    stats.add_row("Failed", str(len(summary.failures)))
    stats.add_row("Stopped", "yes" if summary.stopped else "no")
    stats.add_row("Elapsed", format_duration(elapsed))
    console.print(stats)

    for iteration, error in summary.failures:
        console.print(f"[red]Iteration {iteration}: {error}[/red]")


async def balance_command(ctx: BotContext):
    """Show every coin held by the configured wallet."""
    balances = await ctx.chain.get_all_balances(ctx.wallet.address)

    table = Table(title=f"Balances of {format_address(ctx.wallet.address)}", box=box.ROUNDED)
    table.add_column("Asset", style="cyan")
    table.add_column("Balance (raw)", justify="right", style="green")
    table.add_column("Balance (9 decimals)", justify="right")

    for asset, balance in sorted(balances.items()):
        table.add_row(short_asset(asset), str(balance), format_mist(balance))
    if not balances:
        table.add_row("-", "0", "0")
    console.print(table)


async def run_command(args, config: Config) -> int:
    stop = asyncio.Event()
    install_stop_handlers(stop)

    ctx = BotContext.from_config(config, stop=stop)

    if args.command == "balance":
        await balance_command(ctx)
        return 0

    strategy = create_strategy(args.command, ctx, forever=args.forever)
    print_banner(ctx, args.command)

    iterations: Optional[int] = None if args.forever else args.iterations
    loop = asyncio.get_running_loop()
    started = loop.time()
    summary = await strategy.run(iterations=iterations)
    render_summary(summary, loop.time() - started)

    stats = ctx.orchestrator.get_stats()
    console.print(
        f"[dim]Submissions: {stats['submissions']}, "
        f"successes: {stats['successes']}, failures: {stats['failures']}, "
        f"cache hits: {ctx.cache.hits}/{ctx.cache.hits + ctx.cache.misses}[/dim]"
    )
    return 0 if summary.results or summary.stopped else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregator swap bot for Sui")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, help="YAML file with strategy parameters")
    common.add_argument("--log-level", type=str, default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Override the configured log level")
    common.add_argument("--forever", action="store_true",
                        help="Repeat until interrupted (Ctrl+C)")
    common.add_argument("--iterations", type=int, default=1,
                        help="Number of strategy iterations (default: 1)")
    common.add_argument("--target", type=str, help="Target coin type")
    common.add_argument("--base", type=str, help="Base coin type (default: SUI)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("balance", parents=[common], help="Show wallet balances")

    swap_parser = subparsers.add_parser("swap", parents=[common], help="Swap a fixed amount")
    swap_parser.add_argument("--amount", type=int, help="Amount in smallest units")
    swap_parser.add_argument("--batch", type=int, help="Identical swaps in one transaction")

    subparsers.add_parser("sweep", parents=[common], help="Sell every non-base coin")

    rt_parser = subparsers.add_parser("roundtrip", parents=[common], help="Buy then sell the target")
    rt_parser.add_argument("--amount", type=int, help="Base amount to buy with")

    volume_parser = subparsers.add_parser("volume", parents=[common], help="Repeated round trips")
    volume_parser.add_argument("--amount", type=int, help="Base amount per round")
    volume_parser.add_argument("--rounds", type=int, help="Round trips per iteration")

    relay_parser = subparsers.add_parser("relay", parents=[common], help="Swap from fresh wallets")
    relay_parser.add_argument("--amount", type=int, help="Amount each disposable wallet swaps")
    relay_parser.add_argument("--stipend", type=int, help="MIST sent to each disposable wallet")

    return parser


def apply_overrides(config: Config, args) -> Config:
    """Command line flags win over the environment and the config file."""
    if args.target:
        config.target_asset = args.target
    if args.base:
        config.base_asset = args.base
    if args.log_level:
        config.log_level = args.log_level

    amount = getattr(args, "amount", None)
    if amount is not None:
        if args.command == "volume":
            config.volume_trade_amount = amount
        else:
            config.swap_amount = amount
    if getattr(args, "batch", None) is not None:
        config.batch_count = args.batch
    if getattr(args, "rounds", None) is not None:
        config.volume_trades = args.rounds
    if getattr(args, "stipend", None) is not None:
        config.gas_stipend = args.stipend
    return config


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1
    if not args.forever and args.iterations < 1:
        parser.error("--iterations must be at least 1")

    try:
        config = apply_overrides(Config.from_env(config_path=args.config), args)
        setup_logging(config.log_level, config.log_file)
        return asyncio.run(run_command(args, config))
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
