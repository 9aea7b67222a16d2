# app/utils/swap.py
"""
Stateless quote/execute swap flow.

Unlike goal investments nothing is persisted: the client carries the quote
between the two calls and the server re-derives everything else from it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.errors import ErrorCode, ServiceResult
from app.core.jupiter import JupiterClient
from app.core.solana import SolanaClient, explorer_url, is_valid_solana_address
from app.utils.quotes import Quote, acquire_quote
from app.utils.slippage import SlippageLadder, escalate_swap
from app.utils.submission import FailureKind, TransactionSubmitter
from app.utils.tokens import get_token
from app.utils.transaction_builder import PreparedSwap, decode_signed_transaction, fee_payer, prepare_swap

logger = logging.getLogger(__name__)


def resolve_mint(asset: str) -> Optional[str]:
    token = get_token(asset)
    if token is not None:
        return token.mint
    if is_valid_solana_address(asset):
        return asset.strip()
    return None


@dataclass
class SwapExecution:
    signature: str
    explorer_url: str


class SwapService:
    def __init__(
        self,
        solana: SolanaClient,
        jupiter: JupiterClient,
        settings,
        *,
        submitter: Optional[TransactionSubmitter] = None,
        ladder: Optional[SlippageLadder] = None,
    ) -> None:
        self.solana = solana
        self.jupiter = jupiter
        self.settings = settings
        self.submitter = submitter or TransactionSubmitter.from_settings(solana, settings)
        self.ladder = ladder or SlippageLadder.from_settings(settings)

    def _resolve_pair(self, input_asset: str, output_asset: str) -> ServiceResult[tuple]:
        input_mint = resolve_mint(input_asset)
        output_mint = resolve_mint(output_asset)
        if input_mint is None or output_mint is None:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Unknown input or output asset")
        return ServiceResult.success((input_mint, output_mint))

    async def quote(
        self,
        wallet_address: Optional[str],
        input_asset: str,
        output_asset: str,
        amount_base_units: int,
        tolerance_bps: int,
    ) -> ServiceResult[PreparedSwap]:
        if not is_valid_solana_address(wallet_address):
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Link a Solana wallet before swapping")
        if not self.ladder.allows(tolerance_bps):
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR,
                f"toleranceBps must be between 1 and {self.ladder.ceiling_bps}",
            )
        pair = self._resolve_pair(input_asset, output_asset)
        if not pair.ok:
            return ServiceResult.from_error(pair.error)
        input_mint, output_mint = pair.value

        quoted = await acquire_quote(
            self.jupiter, input_mint, output_mint, amount_base_units, tolerance_bps, self.settings.QUOTE_TTL_SECONDS
        )
        if not quoted.ok:
            return ServiceResult.from_error(quoted.error)
        return await prepare_swap(self.jupiter, self.solana, quoted.value, wallet_address)

    async def execute(
        self,
        wallet_address: Optional[str],
        input_asset: str,
        output_asset: str,
        amount_base_units: int,
        tolerance_bps: int,
        signed_transaction: str,
        quote_response: Dict[str, Any],
        last_valid_block_height: Optional[int] = None,
    ) -> ServiceResult[SwapExecution]:
        if not is_valid_solana_address(wallet_address):
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Link a Solana wallet before swapping")
        pair = self._resolve_pair(input_asset, output_asset)
        if not pair.ok:
            return ServiceResult.from_error(pair.error)
        input_mint, output_mint = pair.value
        if quote_response.get("inputMint") != input_mint or quote_response.get("outputMint") != output_mint:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "quoteResponse does not match the requested pair")

        decoded = decode_signed_transaction(signed_transaction)
        if not decoded.ok:
            return ServiceResult.from_error(decoded.error)
        tx = decoded.value
        if fee_payer(tx) != wallet_address:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Transaction fee payer does not match your wallet")

        outcome = await self.submitter.submit_and_confirm(tx, last_valid_block_height)
        if outcome.confirmed:
            return ServiceResult.success(
                SwapExecution(outcome.signature, explorer_url(outcome.signature, self.settings.is_devnet))
            )

        current_bps = int(quote_response.get("slippageBps") or tolerance_bps)
        amount = int(quote_response.get("inAmount") or amount_base_units)

        if outcome.failure == FailureKind.EXPIRED:
            quoted = await acquire_quote(
                self.jupiter, input_mint, output_mint, amount, current_bps, self.settings.QUOTE_TTL_SECONDS
            )
            if not quoted.ok:
                return ServiceResult.from_error(quoted.error)
            rebuilt = await prepare_swap(self.jupiter, self.solana, quoted.value, wallet_address)
            if not rebuilt.ok:
                return ServiceResult.from_error(rebuilt.error)
            return self._retry_payload(
                ErrorCode.BLOCKHASH_EXPIRED,
                "Transaction expired before confirmation; sign the new transaction",
                rebuilt.value,
                current_bps,
            )

        if outcome.failure == FailureKind.SLIPPAGE:
            escalation = await escalate_swap(
                self.jupiter,
                self.solana,
                self.ladder,
                input_mint=input_mint,
                output_mint=output_mint,
                amount_base_units=amount,
                current_bps=current_bps,
                wallet_address=wallet_address,
                ttl_seconds=self.settings.QUOTE_TTL_SECONDS,
            )
            if not escalation.ok:
                return ServiceResult.from_error(escalation.error)
            return self._retry_payload(
                ErrorCode.SLIPPAGE_EXCEEDED,
                f"Price moved; retry at {escalation.value.slippage_bps} bps tolerance",
                escalation.value.prepared,
                escalation.value.slippage_bps,
            )

        if outcome.failure == FailureKind.UNCONFIRMED:
            return ServiceResult.failure(
                ErrorCode.NETWORK_ERROR,
                "Transaction submitted but not confirmed yet",
                retryable=True,
                payload={"signature": outcome.signature},
            )

        logger.error(f"Swap rejected for {wallet_address}: {outcome.reason}")
        return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "Transaction was rejected by the network")

    @staticmethod
    def _retry_payload(code: ErrorCode, message: str, prepared: PreparedSwap, slippage_bps: int) -> ServiceResult:
        quote: Quote = prepared.quote
        return ServiceResult.failure(
            code,
            message,
            retryable=True,
            payload={
                "newQuote": quote.to_public_dict(),
                "newUnsignedTransaction": prepared.transaction.payload,
                "newSlippageBps": slippage_bps,
                "anchor": prepared.transaction.anchor.to_dict(),
            },
        )
