# app/utils/submission.py
"""
Submit a client-signed transaction and drive it to a terminal outcome.

The submitter only talks to the network; persisting state transitions is
left to the orchestrators (invest, swap, transfers), which reconstruct all
context from stored records between the prepare and submit requests.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
from solders.transaction import VersionedTransaction

from app.core.retry import with_retry
from app.core.solana import RpcError, SolanaClient
from app.utils.transaction_builder import encode_transaction, recent_blockhash

logger = logging.getLogger(__name__)

EXPIRY_SIGNATURES = (
    "blockhash not found",
    "blockhashnotfound",
    "block height exceeded",
    "transactionexpiredblockheightexceeded",
    "transaction has expired",
)

# Jupiter aggregator custom error 6001 (0x1771) is SlippageToleranceExceeded
SLIPPAGE_SIGNATURES = (
    "slippagetoleranceexceeded",
    "slippage tolerance exceeded",
    "0x1771",
    "custom program error: 6001",
    "'custom': 6001",
    '"custom": 6001',
    '"custom":6001',
)


class FailureKind(str, Enum):
    EXPIRED = "EXPIRED"
    SLIPPAGE = "SLIPPAGE"
    REJECTED = "REJECTED"
    # Outcome unknown (transport exhausted or confirmation timed out); record stays SUBMITTED
    UNCONFIRMED = "UNCONFIRMED"


def classify_failure(
    message: Any,
    current_height: Optional[int] = None,
    last_valid_block_height: Optional[int] = None,
) -> FailureKind:
    if (
        current_height is not None
        and last_valid_block_height is not None
        and current_height > last_valid_block_height
    ):
        return FailureKind.EXPIRED

    text = str(message or "").lower()
    if any(sig in text for sig in EXPIRY_SIGNATURES):
        return FailureKind.EXPIRED
    if any(sig in text for sig in SLIPPAGE_SIGNATURES):
        return FailureKind.SLIPPAGE
    return FailureKind.REJECTED


@dataclass
class SubmissionOutcome:
    signature: Optional[str] = None
    failure: Optional[FailureKind] = None
    reason: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.failure is None and self.signature is not None


class TransactionSubmitter:
    def __init__(
        self,
        solana: SolanaClient,
        *,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        confirm_timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> None:
        self._solana = solana
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval

    @classmethod
    def from_settings(cls, solana: SolanaClient, settings) -> "TransactionSubmitter":
        return cls(
            solana,
            max_retries=settings.SUBMIT_MAX_RETRIES,
            retry_delay=settings.SUBMIT_RETRY_DELAY_SECONDS,
            confirm_timeout=settings.CONFIRM_TIMEOUT_SECONDS,
            poll_interval=settings.CONFIRM_POLL_INTERVAL_SECONDS,
        )

    async def current_height(self) -> Optional[int]:
        try:
            return await self._solana.get_block_height()
        except (RpcError, httpx.HTTPError) as e:
            logger.warning(f"Could not read block height: {e}")
            return None

    async def is_anchor_expired(self, last_valid_block_height: Optional[int], blockhash: Optional[str] = None) -> bool:
        """
        Past the anchor's last valid height. Without a stored height the
        transaction's own blockhash is checked with `isBlockhashValid`.
        """
        if last_valid_block_height is not None:
            height = await self.current_height()
            return height is not None and height > last_valid_block_height
        if not blockhash:
            return False
        try:
            return not await self._solana.is_blockhash_valid(blockhash)
        except (RpcError, httpx.HTTPError) as e:
            logger.warning(f"Could not check blockhash {blockhash[:12]}..: {e}")
            return False

    async def _send(self, payload: str) -> str:
        @with_retry(
            max_retries=self._max_retries,
            retry_delay=self._retry_delay,
            retry_on=(httpx.TransportError,),
        )
        async def send_transaction() -> str:
            return await self._solana.send_raw_transaction(payload, max_retries=self._max_retries)

        return await send_transaction()

    async def submit_and_confirm(
        self,
        signed: VersionedTransaction,
        last_valid_block_height: Optional[int],
    ) -> SubmissionOutcome:
        expected_signature = str(signed.signatures[0])
        blockhash = recent_blockhash(signed)

        if await self.is_anchor_expired(last_valid_block_height, blockhash):
            logger.info(f"Anchor expired before submission of {expected_signature[:12]}..")
            return SubmissionOutcome(
                signature=None,
                failure=FailureKind.EXPIRED,
                reason="Blockhash expired before submission",
            )

        try:
            signature = await self._send(encode_transaction(signed))
        except RpcError as e:
            height = await self.current_height()
            kind = classify_failure(e, height, last_valid_block_height)
            logger.warning(f"sendTransaction rejected ({kind.value}): {e}")
            return SubmissionOutcome(signature=None, failure=kind, reason=str(e))
        except httpx.HTTPError as e:
            logger.error(f"sendTransaction unreachable after {self._max_retries} retries: {e}")
            return SubmissionOutcome(
                signature=expected_signature,
                failure=FailureKind.UNCONFIRMED,
                reason=str(e),
            )

        logger.info(f"Submitted transaction {signature}")
        return await self.wait_for_confirmation(signature, last_valid_block_height, blockhash=blockhash)

    async def wait_for_confirmation(
        self,
        signature: str,
        last_valid_block_height: Optional[int],
        *,
        blockhash: Optional[str] = None,
    ) -> SubmissionOutcome:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._confirm_timeout

        while True:
            status = None
            try:
                status = await self._solana.get_signature_status(signature)
            except (RpcError, httpx.HTTPError) as e:
                logger.warning(f"Status poll failed for {signature[:12]}..: {e}")

            if status is not None:
                if status.err is not None:
                    kind = classify_failure(status.err)
                    logger.warning(f"Transaction {signature} failed on-chain ({kind.value}): {status.err}")
                    return SubmissionOutcome(signature=signature, failure=kind, reason=str(status.err))
                if status.reached(self._solana.commitment):
                    logger.info(f"Transaction {signature} reached {status.confirmation_status}")
                    return SubmissionOutcome(signature=signature)
            elif await self.is_anchor_expired(last_valid_block_height, blockhash):
                # Never seen by the cluster and no longer landable
                return SubmissionOutcome(
                    signature=signature,
                    failure=FailureKind.EXPIRED,
                    reason="Block height exceeded before confirmation",
                )

            if loop.time() >= deadline:
                logger.warning(f"Confirmation of {signature} timed out after {self._confirm_timeout}s")
                return SubmissionOutcome(
                    signature=signature,
                    failure=FailureKind.UNCONFIRMED,
                    reason="Confirmation timed out",
                )
            await asyncio.sleep(self._poll_interval)
