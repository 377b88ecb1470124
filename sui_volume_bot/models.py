"""
Data Models
===========
Value types passed between the cache, the orchestrator and the strategies.

Amounts are plain Python ints in the coin's smallest unit (MIST for SUI).
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


SUI_TYPE = "0x2::sui::SUI"
SUI_TYPE_LONG = "0x" + "0" * 63 + "2::sui::SUI"


def normalize_asset(asset: str) -> str:
    """Map the long form of the SUI coin type onto the short one."""
    if asset == SUI_TYPE_LONG:
        return SUI_TYPE
    return asset


def require_amount(amount: int, name: str = "amount") -> int:
    """Validate an on-chain amount: a non-negative int, never a float."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"{name} must be an int in smallest units, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"{name} cannot be negative, got {amount}")
    return amount


class SwapState(Enum):
    """States of one orchestration run."""
    RESOLVING = "resolving"
    BUILDING = "building"
    SIMULATING = "simulating"
    BUDGETING = "budgeting"
    SUBMITTING = "submitting"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class BalanceKey:
    """Cache key for one owner's balance of one asset."""
    address: str
    asset: str


@dataclass
class CacheEntry:
    balance: int
    timestamp: float


@dataclass(frozen=True)
class RouteBundle:
    """Candidate routes returned by the aggregator, in its own order."""
    routes: Tuple[Dict[str, Any], ...] = ()
    amount_in: int = 0
    amount_out: int = 0
    request_id: Optional[str] = None

    def __bool__(self) -> bool:
        return len(self.routes) > 0

    def first(self) -> "RouteBundle":
        """Bundle holding only the first candidate."""
        return RouteBundle(
            routes=self.routes[:1],
            amount_in=self.amount_in,
            amount_out=self.amount_out,
            request_id=self.request_id,
        )


@dataclass
class TransactionDraft:
    """
    Mutable accumulator for one in-flight swap attempt.

    The gas budget can be changed until the draft is signed; built bytes
    are cached and dropped whenever the budget or operations change.
    """
    sender: str
    gas_budget: int = 0
    operations: List[Dict[str, Any]] = field(default_factory=list)
    tx_bytes: Optional[str] = None
    signed: bool = False

    def set_budget(self, budget: int):
        if self.signed:
            raise RuntimeError("Cannot change gas budget of a signed transaction")
        self.gas_budget = require_amount(budget, "gas_budget")
        self.tx_bytes = None

    def add_operation(self, operation: Dict[str, Any]):
        if self.signed:
            raise RuntimeError("Cannot add operations to a signed transaction")
        self.operations.append(operation)
        self.tx_bytes = None

    def mark_signed(self):
        if self.tx_bytes is None:
            raise RuntimeError("Draft must be built before signing")
        self.signed = True


@dataclass(frozen=True)
class SimulationReport:
    """Result of a dry run."""
    success: bool
    computation_cost: int = 0
    storage_cost: int = 0
    storage_rebate: int = 0
    error: Optional[str] = None

    @classmethod
    def from_effects(cls, effects: Dict[str, Any]) -> "SimulationReport":
        status = effects.get("status", {})
        gas = effects.get("gasUsed", {})
        return cls(
            success=status.get("status") == "success",
            computation_cost=int(gas.get("computationCost", 0)),
            storage_cost=int(gas.get("storageCost", 0)),
            storage_rebate=int(gas.get("storageRebate", 0)),
            error=status.get("error"),
        )


@dataclass(frozen=True)
class BalanceChange:
    owner: str
    asset: str
    amount: int


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of executing a signed transaction."""
    success: bool
    digest: Optional[str] = None
    error: Optional[str] = None
    balance_changes: Tuple[BalanceChange, ...] = ()
    computation_cost: int = 0
    storage_cost: int = 0
    storage_rebate: int = 0

    @property
    def gas_used(self) -> int:
        return self.computation_cost + self.storage_cost - self.storage_rebate

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "SubmissionResult":
        effects = response.get("effects") or {}
        status = effects.get("status", {})
        gas = effects.get("gasUsed", {})
        changes = []
        for change in response.get("balanceChanges") or []:
            owner = change.get("owner", {})
            if isinstance(owner, dict):
                owner = owner.get("AddressOwner") or owner.get("ObjectOwner") or str(owner)
            changes.append(BalanceChange(
                owner=owner,
                asset=normalize_asset(change.get("coinType", "")),
                amount=int(change.get("amount", 0)),
            ))
        return cls(
            success=status.get("status") == "success",
            digest=response.get("digest"),
            error=status.get("error"),
            balance_changes=tuple(changes),
            computation_cost=int(gas.get("computationCost", 0)),
            storage_cost=int(gas.get("storageCost", 0)),
            storage_rebate=int(gas.get("storageRebate", 0)),
        )


@dataclass(frozen=True)
class SwapRequest:
    """One swap the orchestrator should perform."""
    from_asset: str
    to_asset: str
    amount: int
    slippage: float = 0.05
    margin_factor: float = 1.2
    batch_count: int = 1
    first_route_only: bool = False
    # Overrides the orchestrator's provisional budget for this request
    provisional_budget: Optional[int] = None

    def __post_init__(self):
        require_amount(self.amount)
        if self.batch_count < 1:
            raise ValueError(f"batch_count must be >= 1, got {self.batch_count}")
        if not 0 < self.slippage < 1:
            raise ValueError(f"slippage must be a fraction in (0, 1), got {self.slippage}")
        if self.margin_factor <= 0:
            raise ValueError(f"margin_factor must be positive, got {self.margin_factor}")
        if self.provisional_budget is not None and self.provisional_budget <= 0:
            raise ValueError("provisional_budget must be positive")

    @property
    def total_amount(self) -> int:
        return self.amount * self.batch_count


@dataclass(frozen=True)
class SwapOutcome:
    """Result of a successful orchestration run."""
    request: SwapRequest
    digest: str
    gas_budget: int
    gas_used: int
    route_count: int
    balance_changes: Tuple[BalanceChange, ...] = ()
    state: SwapState = SwapState.SUCCEEDED

    def delta(self, owner: str, asset: str) -> int:
        """Net balance change for one owner and asset."""
        asset = normalize_asset(asset)
        return sum(
            c.amount for c in self.balance_changes
            if c.owner == owner and c.asset == asset
        )
