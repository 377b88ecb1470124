"""
Bot Wiring
==========
Builds the clients, cache and orchestrator from a Config and creates the
strategy selected on the command line.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from .aggregator import CetusAggregator
from .budget import BudgetEstimator
from .cache import BalanceCache
from .config import Config
from .orchestrator import SwapOrchestrator
from .retry import RetryPolicy
from .strategies import (
    DisposableWalletStrategy,
    RoundTripStrategy,
    SingleSwapStrategy,
    Strategy,
    SweepStrategy,
    VolumeLoopStrategy,
)
from .sui_client import SuiClient
from .wallet import DisposableWalletFactory, Wallet
from .utils import logger, format_address, ConfigError


STRATEGIES = ("swap", "sweep", "roundtrip", "volume", "relay")


@dataclass
class BotContext:
    """Everything a strategy needs, built once per process."""
    config: Config
    wallet: Wallet
    chain: SuiClient
    aggregator: CetusAggregator
    cache: BalanceCache
    orchestrator: SwapOrchestrator
    stop: asyncio.Event

    @classmethod
    def from_config(cls, config: Config, stop: Optional[asyncio.Event] = None) -> "BotContext":
        """
        Validate the configuration and connect the collaborators.

        Raises:
            ConfigError: missing endpoints or malformed private key
        """
        config.validate()
        stop = stop or asyncio.Event()

        wallet = Wallet.from_private_key(config.private_key)
        logger.info(f"Sender Address: {wallet.address}")

        chain = SuiClient(
            config.fullnode_url,
            timeout=config.rpc_timeout_seconds,
            max_retries=config.rpc_max_retries,
        )
        aggregator = CetusAggregator(config.aggregator_url, timeout=config.rpc_timeout_seconds)
        cache = BalanceCache(chain.get_balance, window_seconds=config.balance_cache_seconds)
        orchestrator = SwapOrchestrator(
            chain=chain,
            resolver=aggregator,
            builder=aggregator,
            estimator=BudgetEstimator(config.swap_margin),
            cache=cache,
            provisional_budget=config.provisional_gas_budget,
            transfer_budget=config.transfer_gas_budget,
            stop=stop,
        )
        return cls(config, wallet, chain, aggregator, cache, orchestrator, stop)


def create_strategy(name: str, ctx: BotContext, forever: bool = False) -> Strategy:
    """Create a configured strategy by name."""
    config = ctx.config
    common = dict(
        policy=RetryPolicy(max_attempts=None, delay_seconds=config.error_delay_seconds),
        iteration_delay=config.iteration_delay_seconds,
        stop=ctx.stop,
    )

    if name == "sweep":
        return SweepStrategy(
            ctx.orchestrator, ctx.cache, ctx.wallet, ctx.chain,
            base_asset=config.base_asset,
            slippage=config.slippage,
            margin_factor=config.sweep_margin,
            **common,
        )

    if name not in STRATEGIES:
        raise ConfigError(f"Unknown strategy {name!r}, choose from {', '.join(STRATEGIES)}")
    if not config.target_asset:
        raise ConfigError(f"Strategy {name!r} needs a target asset (target_asset / SWAP_TARGET_ASSET)")

    if name == "swap":
        return SingleSwapStrategy(
            ctx.orchestrator, ctx.cache, ctx.wallet,
            from_asset=config.base_asset,
            to_asset=config.target_asset,
            amount=config.swap_amount,
            batch_count=config.batch_count,
            slippage=config.slippage,
            margin_factor=config.swap_margin,
            min_reserve=config.min_swap_reserve,
            **common,
        )
    if name == "roundtrip":
        return RoundTripStrategy(
            ctx.orchestrator, ctx.cache, ctx.wallet,
            base_asset=config.base_asset,
            target_asset=config.target_asset,
            amount=config.swap_amount,
            slippage=config.slippage,
            margin_factor=config.swap_margin,
            **common,
        )
    if name == "volume":
        return VolumeLoopStrategy(
            ctx.orchestrator, ctx.cache, ctx.wallet,
            base_asset=config.base_asset,
            target_asset=config.target_asset,
            amount=config.volume_trade_amount,
            slippage=config.slippage,
            margin_factor=config.swap_margin,
            settle_delay=config.inter_trade_delay_seconds,
            rounds=config.volume_trades,
            inter_round_delay=config.inter_round_delay_seconds,
            continue_on_failure=not forever,
            **common,
        )

    logger.info(f"Relay funding wallet: {format_address(ctx.wallet.address)}")
    return DisposableWalletStrategy(
        ctx.orchestrator, ctx.cache, ctx.wallet,
        base_asset=config.base_asset,
        target_asset=config.target_asset,
        amount=config.swap_amount,
        gas_stipend=config.gas_stipend,
        min_main_balance=config.min_main_balance,
        factory=DisposableWalletFactory(),
        slippage=config.slippage,
        margin_factor=config.swap_margin,
        **common,
    )
