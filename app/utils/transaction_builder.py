# app/utils/transaction_builder.py
"""
Builds unsigned transactions for client-side signing.

Nothing here touches the database: the result is handed back to the caller
together with the freshness anchor it was built against.
"""
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from solders.errors import BincodeError
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from app.core.errors import ErrorCode, ServiceResult
from app.core.jupiter import JupiterClient, JupiterError
from app.core.solana import Anchor, RpcError, SolanaClient
from app.utils.quotes import Quote

logger = logging.getLogger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


@dataclass
class UnsignedTransaction:
    payload: str
    anchor: Anchor
    fee_estimate_lamports: Optional[int] = None


@dataclass
class PreparedSwap:
    quote: Quote
    transaction: UnsignedTransaction


def encode_transaction(tx: VersionedTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


def fee_payer(tx: VersionedTransaction) -> str:
    return str(tx.message.account_keys[0])


def recent_blockhash(tx: VersionedTransaction) -> str:
    return str(tx.message.recent_blockhash)


async def estimate_fee(solana: SolanaClient, tx: VersionedTransaction) -> Optional[int]:
    message_b64 = base64.b64encode(to_bytes_versioned(tx.message)).decode("ascii")
    try:
        return await solana.get_fee_for_message(message_b64)
    except (RpcError, httpx.HTTPError) as e:
        logger.warning(f"Fee estimate unavailable: {e}")
        return None


async def build_swap_transaction(
    jupiter: JupiterClient,
    solana: SolanaClient,
    quote: Quote,
    wallet_address: str,
) -> UnsignedTransaction:
    """
    Ask the router for the serialized swap transaction for `quote`.

    Raises JupiterError / RpcError / httpx.HTTPError; `prepare_swap` turns
    those into results.
    """
    response = await jupiter.get_swap_transaction(quote.raw, wallet_address)
    payload = response["swapTransaction"]
    try:
        tx = VersionedTransaction.from_bytes(base64.b64decode(payload))
    except (binascii.Error, ValueError, BincodeError) as e:
        raise JupiterError(f"Router returned an undecodable transaction: {e}")

    last_valid = response.get("lastValidBlockHeight")
    if last_valid is None:
        last_valid = (await solana.get_latest_blockhash()).last_valid_block_height
    anchor = Anchor(blockhash=recent_blockhash(tx), last_valid_block_height=int(last_valid))

    fee = await estimate_fee(solana, tx)
    return UnsignedTransaction(payload=payload, anchor=anchor, fee_estimate_lamports=fee)


async def build_transfer_transaction(
    solana: SolanaClient,
    source_address: str,
    destination_address: str,
    lamports: int,
    memo: Optional[str] = None,
) -> UnsignedTransaction:
    source = Pubkey.from_string(source_address)
    destination = Pubkey.from_string(destination_address)
    anchor = await solana.get_latest_blockhash()

    instructions = [
        transfer(TransferParams(from_pubkey=source, to_pubkey=destination, lamports=int(lamports)))
    ]
    if memo:
        instructions.append(
            Instruction(MEMO_PROGRAM_ID, memo.encode("utf-8"), [AccountMeta(source, True, True)])
        )

    message = MessageV0.try_compile(source, instructions, [], Hash.from_string(anchor.blockhash))
    tx = VersionedTransaction.populate(message, [Signature.default()])
    fee = await estimate_fee(solana, tx)
    return UnsignedTransaction(payload=encode_transaction(tx), anchor=anchor, fee_estimate_lamports=fee)


async def prepare_swap(
    jupiter: JupiterClient,
    solana: SolanaClient,
    quote: Quote,
    wallet_address: str,
) -> ServiceResult[PreparedSwap]:
    try:
        unsigned = await build_swap_transaction(jupiter, solana, quote, wallet_address)
    except (JupiterError, RpcError, httpx.HTTPError) as e:
        logger.warning(f"Could not build swap transaction for quote {quote.quote_id}: {e}")
        return ServiceResult.failure(
            ErrorCode.NETWORK_ERROR,
            "Could not build swap transaction, please retry",
            retryable=True,
        )
    return ServiceResult.success(PreparedSwap(quote=quote, transaction=unsigned))


def decode_signed_transaction(payload: Optional[str]) -> ServiceResult[VersionedTransaction]:
    if not payload or not isinstance(payload, str):
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "signedTransaction is required")
    cleaned = payload.strip()
    if not _BASE64_RE.match(cleaned):
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "signedTransaction must be base64 encoded")
    try:
        tx = VersionedTransaction.from_bytes(base64.b64decode(cleaned))
    except (binascii.Error, ValueError, BincodeError) as e:
        logger.info(f"Rejected undecodable signed transaction: {e}")
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "signedTransaction is not a valid transaction")

    if not tx.signatures or any(sig == Signature.default() for sig in tx.signatures):
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Transaction is not signed")
    return ServiceResult.success(tx)
