"""
Swap Orchestrator
=================
Turns a route into a budgeted, simulated and validated on-chain submission.

    RESOLVING -> BUILDING -> SIMULATING -> BUDGETING -> SUBMITTING -> VALIDATING
                                                                   -> SUCCEEDED
    any step ----------------------------------------------------> FAILED

Failures raise a SwapError subclass carrying the state, asset pair, amount
and cause. TransientError passes through untouched; retrying it is the
strategy loop's job. Nothing is ever submitted without a successful dry run.
"""

import asyncio
from typing import Optional, Type

from .budget import BudgetEstimator
from .cache import BalanceCache
from .models import (
    SubmissionResult,
    SwapOutcome,
    SwapRequest,
    SwapState,
    TransactionDraft,
    require_amount,
)
from .wallet import Wallet
from .utils import (
    logger,
    format_address,
    format_sui,
    sanitize_error_message,
    short_asset,
    BuildFailed,
    InsufficientBalance,
    NoRouteFound,
    SimulationFailed,
    StrategyStopped,
    SubmissionRejected,
    SwapError,
    TransientError,
)


DEFAULT_PROVISIONAL_BUDGET = 250_000_000
DEFAULT_TRANSFER_BUDGET = 50_000_000


class SwapOrchestrator:
    """
    Runs single swap attempts against the aggregator and the chain.

    Args:
        chain: Full node client (build, dry_run, execute)
        resolver: Route resolver (find_routes)
        builder: Transaction builder (append_swap)
        estimator: Gas budget estimator
        cache: Balance cache invalidated for the sender after submissions
        provisional_budget: Budget used only to make the dry run runnable
        transfer_budget: Fixed budget for gas stipend transfers
        stop: Stop signal checked before building and before submitting
    """

    def __init__(
        self,
        chain,
        resolver,
        builder,
        estimator: Optional[BudgetEstimator] = None,
        cache: Optional[BalanceCache] = None,
        provisional_budget: int = DEFAULT_PROVISIONAL_BUDGET,
        transfer_budget: int = DEFAULT_TRANSFER_BUDGET,
        stop: Optional[asyncio.Event] = None,
    ):
        self.chain = chain
        self.resolver = resolver
        self.builder = builder
        self.estimator = estimator or BudgetEstimator()
        self.cache = cache
        self.provisional_budget = require_amount(provisional_budget, "provisional_budget")
        self.transfer_budget = require_amount(transfer_budget, "transfer_budget")
        self.stop = stop

        self.submissions = 0
        self.successes = 0
        self.failures = 0

    def _checkpoint(self, state: SwapState):
        if self.stop is not None and self.stop.is_set():
            raise StrategyStopped(f"Stop requested before {state.value}")

    def _fail(
        self,
        error_cls: Type[SwapError],
        reason: str,
        state: SwapState,
        request: SwapRequest,
        cause: Optional[BaseException] = None,
    ) -> SwapError:
        return error_cls(
            sanitize_error_message(reason),
            state=state.value,
            from_asset=request.from_asset,
            to_asset=request.to_asset,
            amount=request.amount,
            cause=cause,
        )

    async def execute(self, request: SwapRequest, wallet: Wallet) -> SwapOutcome:
        """
        Perform one swap attempt for ``wallet``.

        Raises:
            NoRouteFound, BuildFailed, SimulationFailed, SubmissionRejected:
                attempt-terminal failures
            TransientError: network or RPC fault at any step
            StrategyStopped: stop signal seen before submission
        """
        try:
            outcome = await self._execute(request, wallet)
        except SwapError as e:
            self.failures += 1
            logger.warning(f"Swap failed: {e}")
            raise
        self.successes += 1
        return outcome

    async def _execute(self, request: SwapRequest, wallet: Wallet) -> SwapOutcome:
        pair = f"{short_asset(request.from_asset)} -> {short_asset(request.to_asset)}"

        # Resolving
        state = SwapState.RESOLVING
        logger.debug(f"[{state.value}] {pair} amount={request.amount}")
        try:
            bundle = await self.resolver.find_routes(
                request.from_asset, request.to_asset, request.amount, True
            )
        except TransientError:
            raise
        except Exception as e:
            raise self._fail(NoRouteFound, f"Route lookup failed: {e}", state, request, e) from e
        if not bundle:
            raise self._fail(NoRouteFound, "No viable swap routes found", state, request)
        if request.first_route_only:
            bundle = bundle.first()

        # Building
        self._checkpoint(SwapState.BUILDING)
        state = SwapState.BUILDING
        logger.debug(f"[{state.value}] {len(bundle.routes)} route(s) x{request.batch_count}")
        draft = TransactionDraft(sender=wallet.address)
        draft.set_budget(request.provisional_budget or self.provisional_budget)
        try:
            for _ in range(request.batch_count):
                await self.builder.append_swap(draft, bundle, request.slippage, True)
        except TransientError:
            raise
        except Exception as e:
            raise self._fail(BuildFailed, str(e), state, request, e) from e

        # Simulating
        state = SwapState.SIMULATING
        logger.debug(f"[{state.value}] provisional budget {draft.gas_budget}")
        try:
            tx_bytes = await self.chain.build(draft)
            report = await self.chain.dry_run(tx_bytes)
        except TransientError:
            raise
        except Exception as e:
            raise self._fail(SimulationFailed, f"Simulation error: {e}", state, request, e) from e
        if not report.success:
            raise self._fail(
                SimulationFailed, f"Simulation failed: {report.error}", state, request
            )

        # Budgeting
        state = SwapState.BUDGETING
        budget = self.estimator.estimate(report, request.margin_factor)
        draft.set_budget(budget)
        logger.debug(f"[{state.value}] final budget {budget}")
        try:
            await self.chain.build(draft)
        except TransientError:
            raise
        except Exception as e:
            raise self._fail(BuildFailed, f"Rebuild with final budget failed: {e}", state, request, e) from e

        # Submitting
        self._checkpoint(SwapState.SUBMITTING)
        state = SwapState.SUBMITTING
        result = await self._submit(draft, wallet, request, state)

        # Validating
        state = SwapState.VALIDATING
        if not result.success:
            raise self._fail(
                SubmissionRejected, f"Transaction failed: {result.error}", state, request
            )

        logger.info(
            f"Swap {pair} successful! Digest: {result.digest} "
            f"Gas used: {format_sui(result.gas_used)}"
        )
        return SwapOutcome(
            request=request,
            digest=result.digest,
            gas_budget=budget,
            gas_used=result.gas_used,
            route_count=len(bundle.routes),
            balance_changes=result.balance_changes,
        )

    async def _submit(
        self,
        draft: TransactionDraft,
        wallet: Wallet,
        request: Optional[SwapRequest],
        state: SwapState,
    ) -> SubmissionResult:
        signature = wallet.sign_transaction(draft.tx_bytes)
        draft.mark_signed()
        self.submissions += 1
        try:
            return await self.chain.execute(draft.tx_bytes, signature)
        except TransientError:
            raise
        except Exception as e:
            if request is None:
                raise SubmissionRejected(sanitize_error_message(str(e)), state=state.value, cause=e) from e
            raise self._fail(SubmissionRejected, str(e), state, request, e) from e
        finally:
            if self.cache is not None:
                self.cache.invalidate(wallet.address)

    async def transfer(self, wallet: Wallet, recipient: str, amount: int) -> SubmissionResult:
        """
        Send a fixed amount of SUI to ``recipient``.

        Build, sign, submit, validate. The amount is small and fixed so the
        transaction goes out with the configured transfer budget, without a
        dry run.

        Raises:
            InsufficientBalance: sender cannot cover amount plus budget
            BuildFailed, SubmissionRejected, TransientError, StrategyStopped
        """
        try:
            result = await self._transfer(wallet, recipient, amount)
        except SwapError as e:
            self.failures += 1
            logger.warning(f"Transfer failed: {e}")
            raise
        self.successes += 1
        logger.info(
            f"Transferred {format_sui(amount)} to {format_address(recipient)} ({result.digest})"
        )
        return result

    async def _transfer(self, wallet: Wallet, recipient: str, amount: int) -> SubmissionResult:
        require_amount(amount)
        state = SwapState.BUILDING
        draft = TransactionDraft(sender=wallet.address)
        draft.set_budget(self.transfer_budget)
        draft.add_operation({"kind": "pay_sui", "recipient": recipient, "amount": amount})
        try:
            await self.chain.build(draft)
        except (TransientError, InsufficientBalance):
            raise
        except Exception as e:
            raise BuildFailed(
                sanitize_error_message(f"Transfer build failed: {e}"), state=state.value,
                amount=amount, cause=e,
            ) from e

        self._checkpoint(SwapState.SUBMITTING)
        result = await self._submit(draft, wallet, None, SwapState.SUBMITTING)
        if self.cache is not None:
            self.cache.invalidate(recipient)

        if not result.success:
            raise SubmissionRejected(
                f"Transfer failed: {result.error}", state=SwapState.VALIDATING.value, amount=amount
            )
        return result

    def get_stats(self):
        """Submission counters."""
        return {
            "submissions": self.submissions,
            "successes": self.successes,
            "failures": self.failures,
        }
