"""
Cetus Aggregator Integration
============================
Route discovery and swap-call assembly through the aggregator's HTTP API.

Two roles, used by the orchestrator through duck typing:

- Route resolver: ``find_routes(from_asset, to_asset, amount, by_amount_in)``
  returns a RouteBundle, or None when the aggregator has no route.
- Transaction builder: ``append_swap(draft, routes, slippage, by_amount_in)``
  appends the move calls executing ``routes`` to a TransactionDraft. It may
  be called repeatedly on one draft to batch identical swaps.

Routes are passed through unmodified; ranking is the aggregator's own.

Limitations:

- ``POST {base_url}/swap_calls`` is an assumed endpoint shape. The public
  aggregator API documents route discovery only; swap assembly normally
  happens in the SDK.
- The returned move calls are built with ``unsafe_batchTransaction``, which
  cannot feed one call's result into the next. Multi-hop routes that chain
  coin outputs need a programmable-transaction builder behind the same
  ``append_swap`` interface. Until then this adapter is not claimed to swap
  end to end against mainnet.
"""

import asyncio
from typing import Any, Dict, Optional

import requests

from .models import RouteBundle, TransactionDraft, require_amount
from .utils import logger, short_asset, BotError, TransientError


RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class AggregatorError(BotError):
    """Aggregator rejected a request for a reason other than 'no route'."""
    pass


class CetusAggregator:
    """HTTP client for the aggregator routing service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
        depth: int = 3,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.depth = depth
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json"}

    def _handle(self, response: requests.Response, what: str) -> Dict[str, Any]:
        if response.status_code in RETRYABLE_STATUS:
            raise TransientError(f"Aggregator {what}: HTTP {response.status_code}")
        if response.status_code != 200:
            error_text = response.text[:300] if response.text else "Unknown error"
            raise AggregatorError(f"Aggregator {what}: {response.status_code} - {error_text}")
        try:
            return response.json()
        except ValueError as e:
            raise TransientError(f"Aggregator {what}: invalid JSON response") from e

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.get(
                f"{self.base_url}/{path}",
                params=params,
                headers=self.headers,
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"Aggregator {path}: {e}") from e
        return self._handle(response, path)

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(
                f"{self.base_url}/{path}",
                json=body,
                headers=self.headers,
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"Aggregator {path}: {e}") from e
        return self._handle(response, path)

    def find_routes_sync(
        self,
        from_asset: str,
        to_asset: str,
        amount: int,
        by_amount_in: bool = True,
    ) -> Optional[RouteBundle]:
        require_amount(amount)
        params = {
            "from": from_asset,
            "target": to_asset,
            "amount": str(amount),
            "by_amount_in": "true" if by_amount_in else "false",
            "depth": self.depth,
        }
        body = self._get("find_routes", params)

        if body.get("code", 200) != 200:
            logger.info(
                f"No route {short_asset(from_asset)} -> {short_asset(to_asset)}: "
                f"{body.get('code')} {body.get('msg', '')}"
            )
            return None

        data = body.get("data") or {}
        if data.get("insufficient_liquidity"):
            logger.info(f"Insufficient liquidity for {short_asset(from_asset)} -> {short_asset(to_asset)}")
            return None

        routes = tuple(data.get("routes") or ())
        if not routes:
            return None

        return RouteBundle(
            routes=routes,
            amount_in=int(data.get("amount_in", amount)),
            amount_out=int(data.get("amount_out", 0)),
            request_id=data.get("request_id"),
        )

    async def find_routes(
        self,
        from_asset: str,
        to_asset: str,
        amount: int,
        by_amount_in: bool = True,
    ) -> Optional[RouteBundle]:
        """Ask the aggregator for candidate routes."""
        return await asyncio.to_thread(
            self.find_routes_sync, from_asset, to_asset, amount, by_amount_in
        )

    def append_swap_sync(
        self,
        draft: TransactionDraft,
        routes: RouteBundle,
        slippage: float,
        by_amount_in: bool = True,
    ) -> TransactionDraft:
        body = {
            "sender": draft.sender,
            "routes": list(routes.routes),
            "amount_in": str(routes.amount_in),
            "amount_out": str(routes.amount_out),
            "request_id": routes.request_id,
            "slippage": slippage,
            "by_amount_in": by_amount_in,
        }
        data = self._post("swap_calls", body).get("data") or {}
        calls = data.get("calls") or []
        if not calls:
            raise AggregatorError("Aggregator returned no swap calls for the route")

        for call in calls:
            draft.add_operation({"kind": "move_call", **call})
        return draft

    async def append_swap(
        self,
        draft: TransactionDraft,
        routes: RouteBundle,
        slippage: float,
        by_amount_in: bool = True,
    ) -> TransactionDraft:
        """Append the swap operations for ``routes`` to ``draft``."""
        return await asyncio.to_thread(
            self.append_swap_sync, draft, routes, slippage, by_amount_in
        )
