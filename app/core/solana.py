# app/core/solana.py
"""
Thin async JSON-RPC client for the Solana cluster.

One instance is created at application startup (see app/main.py), stored on
`app.state` and handed to request handlers through `app.api.deps`.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000


class RpcError(Exception):
    """JSON-RPC level failure (node answered with an error object or a bad status)."""

    def __init__(self, method: str, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.method = method
        self.code = code
        self.data = data

    def __str__(self) -> str:
        base = super().__str__()
        if self.data:
            return f"{base} {self.data}"
        return base


@dataclass(frozen=True)
class Anchor:
    """Freshness anchor: a recent blockhash and the last block height it stays valid for."""
    blockhash: str
    last_valid_block_height: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recentBlockhash": self.blockhash,
            "lastValidBlockHeight": self.last_valid_block_height,
        }


@dataclass(frozen=True)
class SignatureStatus:
    confirmation_status: Optional[str]
    err: Any
    slot: Optional[int] = None

    def reached(self, commitment: str) -> bool:
        if self.err is not None:
            return False
        order = ["processed", "confirmed", "finalized"]
        if self.confirmation_status not in order:
            return False
        target = commitment if commitment in order else "confirmed"
        return order.index(self.confirmation_status) >= order.index(target)


def is_valid_solana_address(address: Optional[str]) -> bool:
    if not address or not isinstance(address, str):
        return False
    try:
        Pubkey.from_string(address.strip())
    except ValueError:
        return False
    return True


def explorer_url(signature: str, devnet: bool = False) -> str:
    suffix = "?cluster=devnet" if devnet else ""
    return f"https://explorer.solana.com/tx/{signature}{suffix}"


class SolanaClient:
    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._commitment = commitment
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def commitment(self) -> str:
        return self._commitment

    async def start(self) -> None:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    async def __aenter__(self) -> "SolanaClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _rpc_call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        if self._http_client is None:
            await self.start()

        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or [],
        }

        response = await self._http_client.post(self._rpc_url, json=payload)
        try:
            body = response.json()
        except ValueError:
            raise RpcError(method, f"RPC call failed: method={method} status={response.status_code} body={response.text[:200]}")

        if response.status_code >= 400:
            raise RpcError(method, f"RPC call failed: method={method} status={response.status_code}", data=body)

        if not isinstance(body, dict):
            raise RpcError(method, f"Invalid RPC response for {method}: {body}")

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(
                    method,
                    str(error.get("message") or error),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcError(method, str(error))

        return body.get("result")

    async def get_latest_blockhash(self) -> Anchor:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self._commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise RpcError("getLatestBlockhash", f"Unexpected getLatestBlockhash payload: {result}")

        blockhash = str(value.get("blockhash") or "").strip()
        if not blockhash:
            raise RpcError("getLatestBlockhash", f"Missing blockhash in RPC response: {result}")
        return Anchor(blockhash=blockhash, last_valid_block_height=int(value.get("lastValidBlockHeight") or 0))

    async def get_block_height(self) -> int:
        result = await self._rpc_call("getBlockHeight", [{"commitment": self._commitment}])
        return int(result)

    async def is_blockhash_valid(self, blockhash: str) -> bool:
        result = await self._rpc_call("isBlockhashValid", [blockhash, {"commitment": self._commitment}])
        if isinstance(result, dict):
            return bool(result.get("value"))
        return bool(result)

    async def get_balance(self, address: str) -> int:
        result = await self._rpc_call("getBalance", [address, {"commitment": self._commitment}])
        if isinstance(result, dict):
            return int(result.get("value") or 0)
        return int(result or 0)

    async def get_fee_for_message(self, message_b64: str) -> Optional[int]:
        result = await self._rpc_call("getFeeForMessage", [message_b64, {"commitment": self._commitment}])
        if isinstance(result, dict) and result.get("value") is not None:
            return int(result["value"])
        return None

    async def send_raw_transaction(self, payload_b64: str, *, skip_preflight: bool = False, max_retries: int = 3) -> str:
        result = await self._rpc_call(
            "sendTransaction",
            [
                payload_b64,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self._commitment,
                    "maxRetries": max_retries,
                },
            ],
        )
        if not isinstance(result, str) or not result:
            raise RpcError("sendTransaction", f"Unexpected sendTransaction result: {result}")
        return result

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        result = await self._rpc_call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not values or values[0] is None:
            return None
        entry = values[0]
        return SignatureStatus(
            confirmation_status=entry.get("confirmationStatus"),
            err=entry.get("err"),
            slot=entry.get("slot"),
        )

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self._rpc_call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self._commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def get_balance_delta(self, signature: str, owner: str, mint: str) -> Optional[int]:
        """
        Net amount of `mint` (base units) that `owner` gained in a confirmed transaction.

        Native SOL is measured on the owner's lamport balance with the network
        fee added back, SPL tokens on the owner's token balances.
        """
        tx = await self.get_transaction(signature)
        if not tx:
            return None
        meta = tx.get("meta") or {}

        if mint == NATIVE_SOL_MINT:
            keys = ((tx.get("transaction") or {}).get("message") or {}).get("accountKeys") or []
            addresses = [k.get("pubkey") if isinstance(k, dict) else k for k in keys]
            if owner not in addresses:
                return None
            idx = addresses.index(owner)
            pre = meta.get("preBalances") or []
            post = meta.get("postBalances") or []
            if idx >= len(pre) or idx >= len(post):
                return None
            fee = int(meta.get("fee") or 0) if idx == 0 else 0
            return int(post[idx]) - int(pre[idx]) + fee

        def _total(balances: List[Dict[str, Any]]) -> int:
            total = 0
            for entry in balances or []:
                if entry.get("owner") == owner and entry.get("mint") == mint:
                    total += int((entry.get("uiTokenAmount") or {}).get("amount") or 0)
            return total

        return _total(meta.get("postTokenBalances")) - _total(meta.get("preTokenBalances"))
