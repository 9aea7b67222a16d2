"""
In-memory stand-ins for the Solana RPC and Jupiter clients.

Transactions are real solders VersionedTransactions so the decode, fee payer
and blockhash checks run exactly as they do against the network.
"""
import base64
from typing import Any, Dict, List, Optional

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from app.core.jupiter import RouteNotFoundError
from app.core.solana import Anchor, SignatureStatus


def build_unsigned(payer: str, blockhash: str) -> str:
    payer_key = Pubkey.from_string(payer)
    ix = transfer(TransferParams(from_pubkey=payer_key, to_pubkey=Keypair().pubkey(), lamports=1))
    message = MessageV0.try_compile(payer_key, [ix], [], Hash.from_string(blockhash))
    tx = VersionedTransaction.populate(message, [Signature.default()])
    return base64.b64encode(bytes(tx)).decode("ascii")


def sign(payload_b64: str, keypair: Keypair) -> str:
    unsigned = VersionedTransaction.from_bytes(base64.b64decode(payload_b64))
    signed = VersionedTransaction(unsigned.message, [keypair])
    return base64.b64encode(bytes(signed)).decode("ascii")


def signature_of(signed_b64: str) -> str:
    return str(VersionedTransaction.from_bytes(base64.b64decode(signed_b64)).signatures[0])


class FakeSolana:
    def __init__(self, commitment: str = "confirmed") -> None:
        self.commitment = commitment
        self.block_height = 100
        self.default_balance = 1_000_000_000
        self.balances: Dict[str, int] = {}
        # Popped one per send; an Exception instance is raised instead of sending
        self.send_errors: List[Exception] = []
        self.sent: List[str] = []
        self.auto_confirm = True
        self.statuses: Dict[str, SignatureStatus] = {}
        self.deltas: Dict[str, int] = {}
        self.blockhashes: List[str] = []
        self.last_valid: Dict[str, int] = {}
        # Blocks produced while a sent transaction is in flight
        self.blocks_per_send = 0

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def get_latest_blockhash(self) -> Anchor:
        blockhash = str(Hash.new_unique())
        self.blockhashes.append(blockhash)
        self.last_valid[blockhash] = self.block_height + 150
        return Anchor(blockhash=blockhash, last_valid_block_height=self.last_valid[blockhash])

    async def get_block_height(self) -> int:
        return self.block_height

    async def is_blockhash_valid(self, blockhash: str) -> bool:
        return self.last_valid.get(blockhash, -1) >= self.block_height

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address, self.default_balance)

    async def get_fee_for_message(self, message_b64: str) -> Optional[int]:
        return 5000

    async def send_raw_transaction(self, payload_b64: str, *, skip_preflight: bool = False, max_retries: int = 3) -> str:
        self.sent.append(payload_b64)
        self.block_height += self.blocks_per_send
        if self.send_errors:
            raise self.send_errors.pop(0)
        return signature_of(payload_b64)

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        if signature in self.statuses:
            return self.statuses[signature]
        if self.auto_confirm and any(signature_of(p) == signature for p in self.sent):
            return SignatureStatus(confirmation_status="confirmed", err=None, slot=1)
        return None

    async def get_balance_delta(self, signature: str, owner: str, mint: str) -> Optional[int]:
        return self.deltas.get(signature)


class FakeJupiter:
    def __init__(self, solana: FakeSolana, rate: float = 0.01) -> None:
        self.solana = solana
        self.rate = rate
        self.no_route = False
        self.quote_calls: List[Dict[str, Any]] = []
        self.swap_calls = 0

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Dict[str, Any]:
        self.quote_calls.append(
            {"inputMint": input_mint, "outputMint": output_mint, "amount": amount, "slippageBps": slippage_bps}
        )
        if self.no_route:
            raise RouteNotFoundError("No routes found", 400, {"errorCode": "COULD_NOT_FIND_ANY_ROUTE"})
        out_amount = int(amount * self.rate)
        return {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "inAmount": str(amount),
            "outAmount": str(out_amount),
            "otherAmountThreshold": str(out_amount * (10_000 - slippage_bps) // 10_000),
            "slippageBps": slippage_bps,
            "priceImpactPct": "0.001",
            "routePlan": [],
        }

    async def get_swap_transaction(self, quote_response: Dict[str, Any], user_public_key: str) -> Dict[str, Any]:
        self.swap_calls += 1
        anchor = await self.solana.get_latest_blockhash()
        return {
            "swapTransaction": build_unsigned(user_public_key, anchor.blockhash),
            "lastValidBlockHeight": anchor.last_valid_block_height,
        }
