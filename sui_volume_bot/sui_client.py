"""
Sui Full Node Client
====================
Thin JSON-RPC 2.0 adapter over HTTP for the calls the bot needs:
balances, coin listing, transaction building, dry run and execution.

Transaction bytes are assembled by the full node (``unsafe_*`` builder
methods) and treated as opaque base64 strings.

Blocking HTTP runs in a worker thread so strategy coroutines can overlap
independent reads.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import requests

from .models import (
    SUI_TYPE,
    SimulationReport,
    SubmissionResult,
    TransactionDraft,
    normalize_asset,
    require_amount,
)
from .retry import RetryPolicy
from .utils import logger, format_address, BotError, InsufficientBalance, TransientError


RETRYABLE_STATUS = {429, 500, 502, 503, 504}

# Builder mode for unsafe_* methods: "Commit" builds a real transaction
TXN_BUILDER_MODE = "Commit"


class RpcError(BotError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed ({code}): {message}")


class SuiClient:
    """JSON-RPC client for a Sui full node."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        max_retries: int = 5,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self.retry = RetryPolicy(max_attempts=max_retries, delay_seconds=retry_delay)
        self._ids = itertools.count(1)

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------

    def _call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"{method}: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise TransientError(f"{method}: HTTP {response.status_code}")
        if response.status_code != 200:
            raise RpcError(method, response.status_code, response.text[:300])

        try:
            body = response.json()
        except ValueError as e:
            raise TransientError(f"{method}: invalid JSON response") from e

        if body.get("error"):
            error = body["error"]
            raise RpcError(method, error.get("code"), error.get("message", "unknown error"))
        return body.get("result")

    def request(self, method: str, params: List[Any]) -> Any:
        """Call a JSON-RPC method, retrying transient transport failures."""
        return self.retry.call(self._call, method, params)

    async def _request(self, method: str, params: List[Any]) -> Any:
        return await asyncio.to_thread(self.request, method, params)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    async def get_balance(self, owner: str, coin_type: str = SUI_TYPE) -> int:
        """Total balance of one coin type, in smallest units."""
        result = await self._request("suix_getBalance", [owner, coin_type])
        return int(result["totalBalance"])

    async def get_all_balances(self, owner: str) -> Dict[str, int]:
        """Every coin type held by ``owner`` with its total balance."""
        result = await self._request("suix_getAllBalances", [owner])
        return {
            normalize_asset(entry["coinType"]): int(entry["totalBalance"])
            for entry in result or []
        }

    async def get_coins(self, owner: str, coin_type: str = SUI_TYPE, limit: int = 50) -> List[Dict[str, Any]]:
        """All coin objects of one type, following pagination."""
        coins: List[Dict[str, Any]] = []
        cursor = None
        while True:
            page = await self._request("suix_getCoins", [owner, coin_type, cursor, limit])
            coins.extend(page.get("data", []))
            if not page.get("hasNextPage"):
                return coins
            cursor = page.get("nextCursor")

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    async def build(self, draft: TransactionDraft) -> str:
        """
        Build the draft's operations into transaction bytes.

        The bytes are stored on the draft and returned.
        """
        if not draft.operations:
            raise ValueError("Cannot build a transaction without operations")
        if draft.gas_budget <= 0:
            raise ValueError("Gas budget must be set before building")

        kinds = {op.get("kind") for op in draft.operations}
        if kinds == {"pay_sui"}:
            tx_bytes = await self._build_pay_sui(draft)
        elif "pay_sui" in kinds:
            raise ValueError("Cannot mix pay_sui with other operations")
        else:
            params = [_to_single_transaction(op) for op in draft.operations]
            result = await self._request(
                "unsafe_batchTransaction",
                [draft.sender, params, None, str(draft.gas_budget), TXN_BUILDER_MODE],
            )
            tx_bytes = result["txBytes"]

        draft.tx_bytes = tx_bytes
        return tx_bytes

    async def _build_pay_sui(self, draft: TransactionDraft) -> str:
        recipients = [op["recipient"] for op in draft.operations]
        amounts = [require_amount(op["amount"]) for op in draft.operations]
        needed = sum(amounts) + draft.gas_budget

        coins = await self.get_coins(draft.sender, SUI_TYPE)
        selected: List[str] = []
        total = 0
        for coin in sorted(coins, key=lambda c: int(c["balance"]), reverse=True):
            selected.append(coin["coinObjectId"])
            total += int(coin["balance"])
            if total >= needed:
                break

        if total < needed:
            raise InsufficientBalance(
                f"{format_address(draft.sender)} holds {total} MIST, transfer needs {needed}",
                available=total,
                required=needed,
            )

        result = await self._request(
            "unsafe_paySui",
            [draft.sender, selected, recipients, [str(a) for a in amounts], str(draft.gas_budget)],
        )
        return result["txBytes"]

    async def dry_run(self, tx_bytes: str) -> SimulationReport:
        """Simulate transaction bytes without executing them."""
        result = await self._request("sui_dryRunTransactionBlock", [tx_bytes])
        return SimulationReport.from_effects(result.get("effects") or {})

    async def execute(self, tx_bytes: str, signature: str) -> SubmissionResult:
        """Submit a signed transaction, requesting effects and balance changes."""
        options = {
            "showEffects": True,
            "showBalanceChanges": True,
            "showObjectChanges": True,
        }
        result = await self._request(
            "sui_executeTransactionBlock",
            [tx_bytes, [signature], options, "WaitForLocalExecution"],
        )
        submission = SubmissionResult.from_response(result or {})
        logger.debug(f"Executed {submission.digest}: success={submission.success}")
        return submission


def _to_single_transaction(op: Dict[str, Any]) -> Dict[str, Any]:
    """Map a draft operation onto an unsafe_batchTransaction entry."""
    kind = op.get("kind", "move_call")
    if kind == "move_call":
        return {"moveCallRequestParams": {
            "packageObjectId": op["packageObjectId"],
            "module": op["module"],
            "function": op["function"],
            "typeArguments": op.get("typeArguments", []),
            "arguments": op.get("arguments", []),
        }}
    if kind == "transfer_object":
        return {"transferObjectRequestParams": {
            "objectId": op["objectId"],
            "recipient": op["recipient"],
        }}
    raise ValueError(f"Unsupported operation kind: {kind}")
