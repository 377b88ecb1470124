"""
Shared fixtures: in-memory stand-ins for the aggregator and the full node.
"""

import base64
import itertools
from typing import Dict, List, Optional, Tuple

import pytest

from sui_volume_bot.models import (
    SUI_TYPE,
    RouteBundle,
    SimulationReport,
    SubmissionResult,
    TransactionDraft,
)
from sui_volume_bot.utils import InsufficientBalance
from sui_volume_bot.wallet import Wallet


COIN_A = "0xaaa::coin_a::COIN_A"
COIN_B = "0xbbb::coin_b::COIN_B"
COIN_C = "0xccc::coin_c::COIN_C"
TARGET = "0xdef::target::TARGET"


def tx_bytes(n: int) -> str:
    """Base64 bytes the stub chain returns for its n-th build."""
    return base64.b64encode(f"tx{n}".encode()).decode()


class StubResolver:
    """Route resolver returning canned bundles per pair."""

    def __init__(self, routes: Optional[Dict[Tuple[str, str], RouteBundle]] = None, default=None):
        self.routes = routes or {}
        self.default = default
        self.calls: List[Tuple[str, str, int]] = []

    async def find_routes(self, from_asset, to_asset, amount, by_amount_in=True):
        self.calls.append((from_asset, to_asset, amount))
        bundle = self.routes.get((from_asset, to_asset), self.default)
        if isinstance(bundle, Exception):
            raise bundle
        return bundle


class StubBuilder:
    """Appends one fake move call per route."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = 0

    async def append_swap(self, draft: TransactionDraft, routes: RouteBundle, slippage, by_amount_in=True):
        self.calls += 1
        if self.error is not None:
            raise self.error
        for route in routes.routes:
            draft.add_operation({"kind": "move_call", "route": route})
        return draft


class StubChain:
    """
    Fake full node with per-owner balances.

    Balances only change through ``balances`` or the ``on_execute`` hook.
    """

    def __init__(
        self,
        balances: Optional[Dict[Tuple[str, str], int]] = None,
        report: Optional[SimulationReport] = None,
        submit_success: bool = True,
    ):
        self.balances: Dict[Tuple[str, str], int] = dict(balances or {})
        self.report = report or SimulationReport(
            success=True, computation_cost=1_000_000, storage_cost=2_000_000, storage_rebate=500_000
        )
        self.submit_success = submit_success
        self.dry_run_error: Optional[Exception] = None
        self.execute_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.builds: List[Tuple[int, int]] = []
        self.dry_runs = 0
        self.executes: List[Tuple[str, str]] = []
        self.balance_queries: List[Tuple[str, str]] = []
        self.on_execute = None
        self._digests = itertools.count(1)

    async def get_balance(self, owner, coin_type=SUI_TYPE):
        self.balance_queries.append((owner, coin_type))
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get((owner, coin_type), 0)

    async def get_all_balances(self, owner):
        return {asset: bal for (who, asset), bal in self.balances.items() if who == owner}

    async def build(self, draft: TransactionDraft):
        self.builds.append((draft.gas_budget, len(draft.operations)))
        if any(op.get("kind") == "pay_sui" for op in draft.operations):
            have = self.balances.get((draft.sender, SUI_TYPE), 0)
            need = sum(op["amount"] for op in draft.operations) + draft.gas_budget
            if have < need:
                raise InsufficientBalance("not enough SUI", available=have, required=need)
        draft.tx_bytes = tx_bytes(len(self.builds))
        return draft.tx_bytes

    async def dry_run(self, tx_bytes):
        self.dry_runs += 1
        if self.dry_run_error is not None:
            raise self.dry_run_error
        return self.report

    async def execute(self, tx_bytes, signature):
        self.executes.append((tx_bytes, signature))
        if self.execute_error is not None:
            raise self.execute_error
        if self.on_execute is not None:
            self.on_execute(len(self.executes))
        digest = f"digest{next(self._digests)}"
        if not self.submit_success:
            return SubmissionResult(success=False, digest=digest, error="MoveAbort")
        return SubmissionResult(success=True, digest=digest, computation_cost=1_000_000)


class FakeWallet:
    """Signs with a fixed marker; address is given."""

    def __init__(self, address: str):
        self.address = address
        self.signed: List[str] = []

    def sign_transaction(self, tx_bytes: str) -> str:
        self.signed.append(tx_bytes)
        return f"sig:{tx_bytes}"


def bundle(*names) -> RouteBundle:
    names = names or ("r1",)
    return RouteBundle(
        routes=tuple({"id": n} for n in names),
        amount_in=10,
        amount_out=20,
        request_id="req",
    )


@pytest.fixture
def wallet():
    return FakeWallet("0x" + "1" * 64)


@pytest.fixture
def real_wallet():
    return Wallet.generate()
