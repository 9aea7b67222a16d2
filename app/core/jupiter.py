# app/core/jupiter.py
"""
Async client for the Jupiter swap API (quote + serialized swap transaction).
"""
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

NO_ROUTE_MARKERS = (
    "could_not_find_any_route",
    "no routes found",
    "route not found",
    "no_routes_found",
    "token_not_tradable",
)


class JupiterError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RouteNotFoundError(JupiterError):
    """No viable route exists for the pair/amount."""


class JupiterClient:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def start(self) -> None:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    @staticmethod
    def _raise_for_response(response: httpx.Response, action: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text[:500]}

        if response.status_code >= 400 or (isinstance(body, dict) and body.get("error")):
            message = ""
            if isinstance(body, dict):
                message = str(body.get("error") or body.get("message") or body.get("errorCode") or "")
                code = str(body.get("errorCode") or "")
            else:
                code = ""
            lowered = f"{message} {code}".lower()
            if any(marker in lowered for marker in NO_ROUTE_MARKERS):
                raise RouteNotFoundError(message or "No route found", response.status_code, body)
            raise JupiterError(
                f"Jupiter {action} failed (status={response.status_code}): {message or body}",
                response.status_code,
                body,
            )

        if not isinstance(body, dict):
            raise JupiterError(f"Unexpected Jupiter {action} response: {body}", response.status_code, body)
        return body

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Dict[str, Any]:
        if self._http_client is None:
            await self.start()

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": str(int(slippage_bps)),
        }
        response = await self._http_client.get(f"{self._base_url}/quote", params=params, headers=self._headers())
        body = self._raise_for_response(response, "quote")
        if not body.get("outAmount"):
            raise RouteNotFoundError("Quote response carries no outAmount", response.status_code, body)
        return body

    async def get_swap_transaction(self, quote_response: Dict[str, Any], user_public_key: str) -> Dict[str, Any]:
        if self._http_client is None:
            await self.start()

        payload = {
            "quoteResponse": quote_response,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        response = await self._http_client.post(f"{self._base_url}/swap", json=payload, headers=self._headers())
        body = self._raise_for_response(response, "swap")
        if not body.get("swapTransaction"):
            raise JupiterError("Swap response carries no swapTransaction", response.status_code, body)
        return body
