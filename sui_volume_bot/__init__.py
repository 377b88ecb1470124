"""
Sui Aggregator Volume Bot
=========================

Repeated token swaps through the Cetus aggregator on Sui: route discovery,
dry-run gas budgeting, submission and validation, driven by several
strategies (single swap, sweep, round trip, volume loop, disposable-wallet
relay).

Usage:
    from sui_volume_bot import BotContext, Config, create_strategy

    ctx = BotContext.from_config(Config.from_env())
    strategy = create_strategy("roundtrip", ctx)
    summary = asyncio.run(strategy.run(iterations=1))
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import Config, ConfigManager
from .wallet import Wallet, DisposableWalletFactory
from .cache import BalanceCache
from .budget import BudgetEstimator
from .orchestrator import SwapOrchestrator
from .retry import RetryPolicy
from .strategies import (
    Strategy,
    SingleSwapStrategy,
    SweepStrategy,
    RoundTripStrategy,
    VolumeLoopStrategy,
    DisposableWalletStrategy,
)
from .bot import BotContext, create_strategy
from .models import SwapRequest, SwapOutcome, SwapState
from .utils import (
    logger,
    setup_logging,
    BotError,
    ConfigError,
    TransientError,
    BalanceQueryError,
    InsufficientBalance,
    SwapError,
    NoRouteFound,
    SimulationFailed,
    SubmissionRejected,
)

__all__ = [
    "Config",
    "ConfigManager",
    "Wallet",
    "DisposableWalletFactory",
    "BalanceCache",
    "BudgetEstimator",
    "SwapOrchestrator",
    "RetryPolicy",
    "Strategy",
    "SingleSwapStrategy",
    "SweepStrategy",
    "RoundTripStrategy",
    "VolumeLoopStrategy",
    "DisposableWalletStrategy",
    "BotContext",
    "create_strategy",
    "SwapRequest",
    "SwapOutcome",
    "SwapState",
    "logger",
    "setup_logging",
    "BotError",
    "ConfigError",
    "TransientError",
    "BalanceQueryError",
    "InsufficientBalance",
    "SwapError",
    "NoRouteFound",
    "SimulationFailed",
    "SubmissionRejected",
]
