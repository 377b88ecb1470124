"""
Strategy Drivers
================
Policies that drive the orchestrator repeatedly:

- SingleSwapStrategy: one swap of a fixed pair and amount
- SweepStrategy: sell every non-base asset back to the base asset
- RoundTripStrategy: buy the target, then sell the whole target balance
- VolumeLoopStrategy: a fixed number of round trips with delays
- DisposableWalletStrategy: fund a fresh wallet, swap once, discard it

Every strategy runs under the same loop: each iteration sits in a fault
boundary, failures are logged and followed by a fixed delay, and only
configuration errors (plus strategy-specific fatal errors) stop the loop.
The stop signal is checked before each iteration and during every wait.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from .cache import BalanceCache
from .models import SUI_TYPE, SwapOutcome, SwapRequest, normalize_asset
from .orchestrator import SwapOrchestrator
from .retry import RetryPolicy
from .wallet import DisposableWalletFactory, Wallet
from .utils import (
    logger,
    format_address,
    format_mist,
    format_sui,
    sanitize_error_message,
    short_asset,
    BotError,
    ConfigError,
    InsufficientBalance,
    StrategyStopped,
)


class MainWalletDepleted(InsufficientBalance):
    """Funding wallet cannot cover its reserve or the next stipend. Fatal for the relay."""
    pass


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@dataclass
class RunSummary:
    """Outcome of a strategy loop."""
    strategy: str
    iterations: int = 0
    results: List[Any] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)
    stopped: bool = False


@dataclass
class SweepSummary:
    """Per-asset results of one sweep."""
    successes: List[SwapOutcome] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)
    final_base_balance: Optional[int] = None
    stopped: bool = False


@dataclass
class RoundTripReport:
    """One buy/sell cycle and the net balance change it caused."""
    buy: SwapOutcome
    sell: SwapOutcome
    sold_amount: int
    base_delta: int
    target_delta: int


@dataclass
class VolumeSummary:
    """Results of one batch of volume round trips."""
    rounds: int
    completed: List[RoundTripReport] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)
    stopped: bool = False

    @property
    def volume(self) -> int:
        """Base asset sent into buys across completed rounds."""
        return sum(r.buy.request.amount for r in self.completed)


@dataclass
class RelayReport:
    """One disposable-wallet relay iteration."""
    wallet_address: str
    transfer_digest: Optional[str]
    swap: SwapOutcome


# ---------------------------------------------------------------------------
# Base loop
# ---------------------------------------------------------------------------

class Strategy:
    """
    Base class for strategy drivers.

    Subclasses implement ``run_once``; ``run`` wraps it in the shared
    retry-forever loop.
    """

    name = "strategy"
    fatal_errors: Tuple[type, ...] = (ConfigError,)

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        cache: BalanceCache,
        wallet: Wallet,
        policy: Optional[RetryPolicy] = None,
        iteration_delay: float = 1.0,
        stop: Optional[asyncio.Event] = None,
    ):
        self.orchestrator = orchestrator
        self.cache = cache
        self.wallet = wallet
        self.policy = policy or RetryPolicy(max_attempts=None, delay_seconds=2.0)
        self.iteration_delay = iteration_delay
        self.stop = stop if stop is not None else orchestrator.stop

    @property
    def address(self) -> str:
        return self.wallet.address

    def stopped(self) -> bool:
        return self.stop is not None and self.stop.is_set()

    async def run_once(self) -> Any:
        raise NotImplementedError

    async def run(self, iterations: Optional[int] = None) -> RunSummary:
        """
        Repeat ``run_once`` until ``iterations`` is reached or stop is set.

        Raises:
            Any of ``fatal_errors``; everything else is logged and retried
        """
        summary = RunSummary(strategy=self.name)

        while iterations is None or summary.iterations < iterations:
            if self.stopped():
                summary.stopped = True
                break

            summary.iterations += 1
            logger.info(f"=== {self.name}: starting iteration {summary.iterations} ===")

            try:
                result = await self.run_once()
            except StrategyStopped as e:
                if e.partial is not None:
                    summary.results.append(e.partial)
                summary.stopped = True
                break
            except self.fatal_errors as e:
                logger.error(f"Fatal error in {self.name}: {sanitize_error_message(e)}")
                raise
            except Exception as e:
                summary.failures.append((summary.iterations, sanitize_error_message(e)))
                message = f"Operation failed in iteration {summary.iterations}: {sanitize_error_message(e)}"
                if isinstance(e, BotError):
                    logger.error(message)
                else:
                    logger.exception(message)
                delay = self.policy.delay_seconds
            else:
                summary.results.append(result)
                delay = self.iteration_delay

            if iterations is not None and summary.iterations >= iterations:
                break
            if await self.policy.pause(self.stop, delay):
                summary.stopped = True
                break

        logger.info(
            f"{self.name} finished: {len(summary.results)} succeeded, "
            f"{len(summary.failures)} failed over {summary.iterations} iteration(s)"
        )
        return summary

    async def _snapshot(self, *assets: str) -> List[int]:
        return await self.cache.get_many([(self.address, a) for a in assets])


# ---------------------------------------------------------------------------
# Single swap
# ---------------------------------------------------------------------------

class SingleSwapStrategy(Strategy):
    """One swap of a fixed pair and amount, optionally batched."""

    name = "swap"

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        cache: BalanceCache,
        wallet: Wallet,
        from_asset: str,
        to_asset: str,
        amount: int,
        batch_count: int = 1,
        slippage: float = 0.05,
        margin_factor: float = 1.2,
        min_reserve: int = 0,
        **kwargs,
    ):
        super().__init__(orchestrator, cache, wallet, **kwargs)
        self.from_asset = normalize_asset(from_asset)
        self.to_asset = normalize_asset(to_asset)
        if self.from_asset == self.to_asset:
            raise ConfigError("Swap source and target assets must differ")
        self.request = SwapRequest(
            from_asset=self.from_asset,
            to_asset=self.to_asset,
            amount=amount,
            slippage=slippage,
            margin_factor=margin_factor,
            batch_count=batch_count,
        )
        self.min_reserve = min_reserve

    async def run_once(self) -> SwapOutcome:
        from_before, to_before = await self._snapshot(self.from_asset, self.to_asset)
        logger.info(
            f"Balances: {short_asset(self.from_asset)}={format_mist(from_before)} "
            f"{short_asset(self.to_asset)}={format_mist(to_before)}"
        )

        reserve = self.min_reserve if self.from_asset == SUI_TYPE else 0
        needed = self.request.total_amount
        if from_before <= reserve or needed > from_before - reserve:
            raise InsufficientBalance(
                f"Insufficient {short_asset(self.from_asset)} balance for "
                f"{self.request.batch_count} swap(s): have {from_before}, "
                f"need {needed} plus reserve {reserve}",
                available=from_before,
                required=needed + reserve,
            )

        outcome = await self.orchestrator.execute(self.request, self.wallet)

        from_after, to_after = await self._snapshot(self.from_asset, self.to_asset)
        logger.info(
            f"Net change: {short_asset(self.from_asset)} {format_mist(from_after - from_before)}, "
            f"{short_asset(self.to_asset)} {format_mist(to_after - to_before)}"
        )
        return outcome


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

class SweepStrategy(Strategy):
    """Swap every held non-base asset to the base asset."""

    name = "sweep"

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        cache: BalanceCache,
        wallet: Wallet,
        chain,
        base_asset: str = SUI_TYPE,
        slippage: float = 0.05,
        margin_factor: float = 1.1,
        **kwargs,
    ):
        super().__init__(orchestrator, cache, wallet, **kwargs)
        self.chain = chain
        self.base_asset = normalize_asset(base_asset)
        self.slippage = slippage
        self.margin_factor = margin_factor

    async def run_once(self) -> SweepSummary:
        balances = await self.chain.get_all_balances(self.address)
        to_sell = [
            (normalize_asset(asset), balance)
            for asset, balance in balances.items()
            if normalize_asset(asset) != self.base_asset and balance > 0
        ]
        logger.info(f"Found {len(to_sell)} token(s) to sell")

        summary = SweepSummary()
        for asset, balance in to_sell:
            if self.stopped():
                summary.stopped = True
                raise StrategyStopped("Stop requested during sweep", partial=summary)

            logger.info(f"Processing {short_asset(asset)} balance {balance}")
            request = SwapRequest(
                from_asset=asset,
                to_asset=self.base_asset,
                amount=balance,
                slippage=self.slippage,
                margin_factor=self.margin_factor,
            )
            try:
                outcome = await self.orchestrator.execute(request, self.wallet)
            except StrategyStopped as e:
                summary.stopped = True
                e.partial = summary
                raise
            except ConfigError:
                raise
            except Exception as e:
                logger.error(f"Failed to swap {short_asset(asset)}: {sanitize_error_message(e)}")
                summary.failures.append((asset, sanitize_error_message(e)))
                continue
            summary.successes.append(outcome)

        summary.final_base_balance = await self.cache.get(self.address, self.base_asset)
        logger.info(
            f"Sweep complete: {len(summary.successes)} succeeded, {len(summary.failures)} failed. "
            f"Final {short_asset(self.base_asset)} balance: {format_mist(summary.final_base_balance)}"
        )
        return summary


# ---------------------------------------------------------------------------
# Round trip and volume loop
# ---------------------------------------------------------------------------

class RoundTripStrategy(Strategy):
    """Buy the target with a fixed base amount, then sell the whole target balance."""

    name = "roundtrip"

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        cache: BalanceCache,
        wallet: Wallet,
        base_asset: str,
        target_asset: str,
        amount: int,
        slippage: float = 0.05,
        margin_factor: float = 1.2,
        first_route_only: bool = False,
        settle_delay: float = 0.0,
        **kwargs,
    ):
        super().__init__(orchestrator, cache, wallet, **kwargs)
        self.base_asset = normalize_asset(base_asset)
        self.target_asset = normalize_asset(target_asset)
        if self.base_asset == self.target_asset:
            raise ConfigError("Base and target assets must differ")
        self.amount = amount
        self.slippage = slippage
        self.margin_factor = margin_factor
        self.first_route_only = first_route_only
        self.settle_delay = settle_delay

    def _request(self, from_asset: str, to_asset: str, amount: int) -> SwapRequest:
        return SwapRequest(
            from_asset=from_asset,
            to_asset=to_asset,
            amount=amount,
            slippage=self.slippage,
            margin_factor=self.margin_factor,
            first_route_only=self.first_route_only,
        )

    async def round_trip(self) -> RoundTripReport:
        base_before, target_before = await self._snapshot(self.base_asset, self.target_asset)
        logger.info(
            f"Initial balances: {short_asset(self.base_asset)} {format_mist(base_before)}, "
            f"{short_asset(self.target_asset)} {target_before}"
        )

        buy = await self.orchestrator.execute(
            self._request(self.base_asset, self.target_asset, self.amount), self.wallet
        )

        if self.settle_delay and await self.policy.pause(self.stop, self.settle_delay):
            raise StrategyStopped("Stop requested between buy and sell")

        # Actual output may differ from the quote, so sell what the chain reports
        self.cache.invalidate(self.address, self.target_asset)
        target_after_buy = await self.cache.get(self.address, self.target_asset)
        if target_after_buy <= 0:
            raise InsufficientBalance(
                f"No {short_asset(self.target_asset)} to sell after buy {buy.digest}"
            )

        logger.info(f"Selling entire {short_asset(self.target_asset)} balance {target_after_buy}")
        sell = await self.orchestrator.execute(
            self._request(self.target_asset, self.base_asset, target_after_buy), self.wallet
        )

        base_after, target_after = await self._snapshot(self.base_asset, self.target_asset)
        report = RoundTripReport(
            buy=buy,
            sell=sell,
            sold_amount=target_after_buy,
            base_delta=base_after - base_before,
            target_delta=target_after - target_before,
        )
        logger.info(
            f"Net {short_asset(self.base_asset)} change: {format_mist(report.base_delta)}, "
            f"net {short_asset(self.target_asset)} change: {report.target_delta}"
        )
        return report

    async def run_once(self) -> RoundTripReport:
        return await self.round_trip()


class VolumeLoopStrategy(RoundTripStrategy):
    """
    A fixed number of sequential round trips to generate transaction volume.

    With ``continue_on_failure`` a failed round is recorded and the next
    round still runs; without it the failure propagates to the outer loop.
    """

    name = "volume"

    def __init__(
        self,
        *args,
        rounds: int = 10,
        inter_round_delay: float = 3.0,
        continue_on_failure: bool = True,
        **kwargs,
    ):
        kwargs.setdefault("first_route_only", True)
        super().__init__(*args, **kwargs)
        if rounds < 1:
            raise ConfigError("Volume loop needs at least one round")
        self.rounds = rounds
        self.inter_round_delay = inter_round_delay
        self.continue_on_failure = continue_on_failure

    async def run_once(self) -> VolumeSummary:
        summary = VolumeSummary(rounds=self.rounds)
        logger.info(f"Starting {self.rounds} volume trades...")

        for index in range(1, self.rounds + 1):
            if self.stopped():
                summary.stopped = True
                raise StrategyStopped("Stop requested during volume loop", partial=summary)

            logger.info(f"Trade {index}/{self.rounds}")
            try:
                summary.completed.append(await self.round_trip())
            except StrategyStopped as e:
                summary.stopped = True
                e.partial = summary
                raise
            except ConfigError:
                raise
            except Exception as e:
                if not self.continue_on_failure:
                    raise
                logger.error(f"Round {index} failed: {sanitize_error_message(e)}")
                summary.failures.append((index, sanitize_error_message(e)))

            if index < self.rounds and await self.policy.pause(self.stop, self.inter_round_delay):
                summary.stopped = True
                raise StrategyStopped("Stop requested during volume loop", partial=summary)

        logger.info(
            f"Volume trading finished: {len(summary.completed)}/{self.rounds} rounds, "
            f"{len(summary.failures)} failed, volume {format_mist(summary.volume)}"
        )
        return summary


# ---------------------------------------------------------------------------
# Disposable-wallet relay
# ---------------------------------------------------------------------------

class DisposableWalletStrategy(Strategy):
    """
    Fund a throwaway wallet from the main wallet, swap once from it, discard it.

    The main wallet must hold more than ``min_main_balance`` and enough to
    cover the stipend plus its transfer budget before every iteration;
    otherwise the strategy stops since no later iteration can be funded.
    """

    name = "relay"
    fatal_errors = (ConfigError, InsufficientBalance)

    def __init__(
        self,
        orchestrator: SwapOrchestrator,
        cache: BalanceCache,
        wallet: Wallet,
        base_asset: str,
        target_asset: str,
        amount: int,
        gas_stipend: int,
        min_main_balance: int,
        factory: Optional[DisposableWalletFactory] = None,
        slippage: float = 0.05,
        margin_factor: float = 1.2,
        **kwargs,
    ):
        super().__init__(orchestrator, cache, wallet, **kwargs)
        self.base_asset = normalize_asset(base_asset)
        self.target_asset = normalize_asset(target_asset)
        if self.base_asset == self.target_asset:
            raise ConfigError("Base and target assets must differ")
        self.factory = factory if factory is not None else DisposableWalletFactory()
        self.gas_stipend = gas_stipend
        self.min_main_balance = min_main_balance

        # The disposable wallet only holds the stipend, so its provisional
        # budget has to fit inside what is left after the swap amount
        provisional = None
        if self.base_asset == SUI_TYPE:
            provisional = gas_stipend - amount
            if provisional <= 0:
                raise ConfigError("Gas stipend must exceed the relay swap amount")

        self.request = SwapRequest(
            from_asset=self.base_asset,
            to_asset=self.target_asset,
            amount=amount,
            slippage=slippage,
            margin_factor=margin_factor,
            provisional_budget=provisional,
        )

    async def run_once(self) -> RelayReport:
        main_balance = await self.cache.get(self.address, SUI_TYPE)
        required = max(self.gas_stipend + self.orchestrator.transfer_budget, self.min_main_balance + 1)
        if main_balance < required:
            raise MainWalletDepleted(
                f"Insufficient balance in main wallet: {format_sui(main_balance)}, "
                f"need {format_sui(required)}",
                available=main_balance,
                required=required,
            )

        disposable = self.factory.create()
        logger.info(f"Generated new wallet: {disposable.address}")

        logger.info("Transferring gas to new wallet...")
        transfer = await self.orchestrator.transfer(self.wallet, disposable.address, self.gas_stipend)

        logger.info("Executing swap from new wallet...")
        swap = await self.orchestrator.execute(self.request, disposable)

        report = RelayReport(
            wallet_address=disposable.address,
            transfer_digest=transfer.digest,
            swap=swap,
        )
        logger.info(f"Discarding wallet {format_address(disposable.address)}")
        return report
