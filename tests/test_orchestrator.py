"""
Tests for the swap orchestrator state machine.
"""

import asyncio

import pytest

from sui_volume_bot.aggregator import AggregatorError
from sui_volume_bot.cache import BalanceCache
from sui_volume_bot.models import SUI_TYPE, RouteBundle, SimulationReport, SwapRequest, SwapState
from sui_volume_bot.orchestrator import SwapOrchestrator
from sui_volume_bot.utils import (
    BuildFailed,
    InsufficientBalance,
    NoRouteFound,
    SimulationFailed,
    StrategyStopped,
    SubmissionRejected,
    TransientError,
)

from conftest import COIN_A, StubBuilder, StubChain, StubResolver, bundle, tx_bytes


def make(chain=None, resolver=None, builder=None, **kwargs):
    chain = chain or StubChain()
    resolver = resolver or StubResolver(default=bundle("r1", "r2"))
    builder = builder or StubBuilder()
    return SwapOrchestrator(chain, resolver, builder, **kwargs), chain, resolver, builder


REQUEST = SwapRequest(from_asset=SUI_TYPE, to_asset=COIN_A, amount=10)


class TestExecute:
    """Happy path and budget handling."""

    def test_success_uses_dry_run_budget(self, wallet):
        orchestrator, chain, _, _ = make()

        outcome = asyncio.run(orchestrator.execute(REQUEST, wallet))

        # (1_000_000 + 2_000_000 + 500_000) * 1.2
        assert outcome.gas_budget == 4_200_000
        assert outcome.digest == "digest1"
        assert outcome.route_count == 2
        assert outcome.state == SwapState.SUCCEEDED
        assert len(chain.executes) == 1
        assert chain.dry_runs == 1

    def test_signed_bytes_carry_final_budget(self, wallet):
        orchestrator, chain, _, _ = make(provisional_budget=250_000_000)

        asyncio.run(orchestrator.execute(REQUEST, wallet))

        # Provisional build for the dry run, then a rebuild with the final budget
        assert [b for b, _ in chain.builds] == [250_000_000, 4_200_000]
        assert wallet.signed == [tx_bytes(2)]
        assert chain.executes[0][0] == tx_bytes(2)

    def test_request_margin_is_applied(self, wallet):
        orchestrator, _, _, _ = make()
        request = SwapRequest(from_asset=SUI_TYPE, to_asset=COIN_A, amount=10, margin_factor=1.1)

        outcome = asyncio.run(orchestrator.execute(request, wallet))

        assert outcome.gas_budget == 3_850_000

    def test_request_provisional_budget_overrides_default(self, wallet):
        orchestrator, chain, _, _ = make()
        request = SwapRequest(from_asset=SUI_TYPE, to_asset=COIN_A, amount=10, provisional_budget=1_999_990)

        asyncio.run(orchestrator.execute(request, wallet))

        assert chain.builds[0][0] == 1_999_990

    def test_batch_appends_swap_per_count(self, wallet):
        orchestrator, chain, _, builder = make()
        request = SwapRequest(from_asset=SUI_TYPE, to_asset=COIN_A, amount=10, batch_count=3)

        asyncio.run(orchestrator.execute(request, wallet))

        assert builder.calls == 3
        # Two routes per append
        assert chain.builds[0][1] == 6
        assert len(chain.executes) == 1

    def test_first_route_only(self, wallet):
        orchestrator, chain, _, _ = make()
        request = SwapRequest(from_asset=SUI_TYPE, to_asset=COIN_A, amount=10, first_route_only=True)

        outcome = asyncio.run(orchestrator.execute(request, wallet))

        assert outcome.route_count == 1
        assert chain.builds[0][1] == 1

    def test_success_invalidates_sender_balances(self, wallet):
        chain = StubChain(balances={(wallet.address, SUI_TYPE): 100})
        cache = BalanceCache(chain.get_balance, window_seconds=60)
        orchestrator, _, _, _ = make(chain=chain, cache=cache)

        async def scenario():
            await cache.get(wallet.address, SUI_TYPE)
            await orchestrator.execute(REQUEST, wallet)
            await cache.get(wallet.address, SUI_TYPE)

        asyncio.run(scenario())
        assert len(chain.balance_queries) == 2


class TestFailures:
    """Every failure path ends before submission unless the chain rejects."""

    def test_no_route(self, wallet):
        orchestrator, chain, _, builder = make(resolver=StubResolver(default=None))

        with pytest.raises(NoRouteFound) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))

        error = exc_info.value
        assert error.state == "resolving"
        assert error.from_asset == SUI_TYPE
        assert error.to_asset == COIN_A
        assert error.amount == 10
        assert builder.calls == 0
        assert chain.executes == []
        assert orchestrator.failures == 1

    def test_resolver_error_becomes_no_route(self, wallet):
        resolver = StubResolver(default=AggregatorError("bad amount"))
        orchestrator, chain, _, builder = make(resolver=resolver)

        with pytest.raises(NoRouteFound) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))

        error = exc_info.value
        assert error.state == "resolving"
        assert error.to_asset == COIN_A
        assert "bad amount" in error.reason
        assert isinstance(error.cause, AggregatorError)
        assert builder.calls == 0
        assert chain.executes == []
        assert orchestrator.failures == 1

    def test_empty_bundle_is_no_route(self, wallet):
        orchestrator, chain, _, _ = make(resolver=StubResolver(default=RouteBundle()))

        with pytest.raises(NoRouteFound):
            asyncio.run(orchestrator.execute(REQUEST, wallet))
        assert chain.executes == []

    def test_build_failure(self, wallet):
        orchestrator, chain, _, _ = make(builder=StubBuilder(error=ValueError("bad route")))

        with pytest.raises(BuildFailed) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))

        assert exc_info.value.state == "building"
        assert isinstance(exc_info.value.cause, ValueError)
        assert chain.executes == []

    def test_failed_simulation_never_submits(self, wallet):
        chain = StubChain(report=SimulationReport(success=False, error="MoveAbort(1)"))
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(SimulationFailed) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))

        assert exc_info.value.state == "simulating"
        assert "MoveAbort" in exc_info.value.reason
        assert chain.executes == []
        assert wallet.signed == []

    def test_simulation_exception_never_submits(self, wallet):
        chain = StubChain()
        chain.dry_run_error = RuntimeError("dry run exploded")
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(SimulationFailed):
            asyncio.run(orchestrator.execute(REQUEST, wallet))
        assert chain.executes == []

    def test_rejected_submission(self, wallet):
        orchestrator, chain, _, _ = make(chain=StubChain(submit_success=False))

        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))

        assert exc_info.value.state == "validating"
        assert len(chain.executes) == 1
        assert orchestrator.get_stats() == {"submissions": 1, "successes": 0, "failures": 1}

    def test_execute_exception_is_rejection(self, wallet):
        chain = StubChain()
        chain.execute_error = RuntimeError("signature invalid")
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))
        assert exc_info.value.state == "submitting"

    def test_transient_error_passes_through(self, wallet):
        resolver = StubResolver(default=TransientError("aggregator timeout"))
        orchestrator, chain, _, _ = make(resolver=resolver)

        with pytest.raises(TransientError) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))

        assert not isinstance(exc_info.value, NoRouteFound)
        assert chain.executes == []

    def test_transient_dry_run_passes_through(self, wallet):
        chain = StubChain()
        chain.dry_run_error = TransientError("node busy")
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(TransientError) as exc_info:
            asyncio.run(orchestrator.execute(REQUEST, wallet))
        assert not isinstance(exc_info.value, SimulationFailed)

    def test_stop_before_submission(self, wallet):
        stop = asyncio.Event()
        chain = StubChain()
        orchestrator, _, _, _ = make(chain=chain, stop=stop)

        original = chain.dry_run

        async def dry_run_then_stop(tx_bytes):
            stop.set()
            return await original(tx_bytes)

        chain.dry_run = dry_run_then_stop

        with pytest.raises(StrategyStopped):
            asyncio.run(orchestrator.execute(REQUEST, wallet))
        assert chain.executes == []
        assert wallet.signed == []


class TestTransfer:
    """Gas stipend transfers."""

    def test_transfer_uses_fixed_budget(self, wallet):
        chain = StubChain(balances={(wallet.address, SUI_TYPE): 100_000_000})
        orchestrator, _, _, _ = make(chain=chain, transfer_budget=50_000_000)

        result = asyncio.run(orchestrator.transfer(wallet, "0x" + "2" * 64, 2_000_000))

        assert result.success
        assert chain.builds == [(50_000_000, 1)]
        assert chain.dry_runs == 0
        assert len(chain.executes) == 1

    def test_transfer_insufficient_balance(self, wallet):
        chain = StubChain(balances={(wallet.address, SUI_TYPE): 1_000})
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(InsufficientBalance):
            asyncio.run(orchestrator.transfer(wallet, "0x" + "2" * 64, 2_000_000))
        assert chain.executes == []

    def test_transfer_rejected(self, wallet):
        chain = StubChain(balances={(wallet.address, SUI_TYPE): 100_000_000}, submit_success=False)
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(SubmissionRejected):
            asyncio.run(orchestrator.transfer(wallet, "0x" + "2" * 64, 2_000_000))
        assert orchestrator.failures == 1

    def test_transfer_execute_exception_counts_failure(self, wallet):
        chain = StubChain(balances={(wallet.address, SUI_TYPE): 100_000_000})
        chain.execute_error = RuntimeError("connection reset by validator")
        orchestrator, _, _, _ = make(chain=chain)

        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(orchestrator.transfer(wallet, "0x" + "2" * 64, 2_000_000))

        assert exc_info.value.state == "submitting"
        assert orchestrator.get_stats() == {"submissions": 1, "successes": 0, "failures": 1}
