# app/utils/invest.py
"""
Two-phase goal investment: prepare (simulated deposit + unsigned swap) and
execute (submit the client-signed swap, settle it into the ledger).

The two phases are independent requests correlated by batch_id. Everything
execute needs is read back from the stored records; nothing is kept in
memory between them.
"""
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import User
from app.core.errors import ErrorCode, ServiceError, ServiceResult
from app.core.jupiter import JupiterClient
from app.core.solana import RpcError, SolanaClient, explorer_url, is_valid_solana_address
from app.crud.goal import get_goal_by_id, reload_goal
from app.crud.transaction import get_by_batch_and_kind
from app.models.goal import Goal, GoalStatus
from app.models.transaction import TransactionKind, TransactionRecord, TransactionState
from app.schemas.invest import LegPayload
from app.schemas.metadata import SwapMeta
from app.utils.idempotency import ensure_once
from app.utils.ledger import (
    mark_failed,
    mark_refreshed,
    mark_submitted,
    new_deposit_record,
    new_swap_record,
    note_failure,
    record_confirmed_swap,
    swap_meta,
)
from app.utils.quotes import acquire_quote
from app.utils.slippage import SlippageLadder, escalate_swap
from app.utils.submission import FailureKind, SubmissionOutcome, TransactionSubmitter
from app.utils.tokens import TokenInfo, get_token, network_label, to_base_units
from app.utils.transaction_builder import (
    PreparedSwap,
    decode_signed_transaction,
    fee_payer,
    prepare_swap,
    recent_blockhash,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Leg:
    kind: TransactionKind
    input: TokenInfo
    output: TokenInfo


class DirectSwapStrategy:
    """Deposit asset straight into the goal asset."""
    name = "direct"

    def legs(self, deposit: TokenInfo, goal_asset: TokenInfo) -> List[Leg]:
        return [Leg(TransactionKind.SWAP, deposit, goal_asset)]


class TwoLegSwapStrategy:
    """
    Deposit asset -> intermediate -> goal asset, one batch, two records.

    The second leg is only prepared once the first is CONFIRMED, and its
    input is the first leg's confirmed output.
    """
    name = "two_leg"

    def __init__(self, intermediate: TokenInfo) -> None:
        self.intermediate = intermediate

    def legs(self, deposit: TokenInfo, goal_asset: TokenInfo) -> List[Leg]:
        if goal_asset.mint in (self.intermediate.mint, deposit.mint):
            return [Leg(TransactionKind.SWAP, deposit, goal_asset)]
        return [
            Leg(TransactionKind.INTERMEDIATE_SWAP, deposit, self.intermediate),
            Leg(TransactionKind.SWAP, self.intermediate, goal_asset),
        ]


def strategy_from_settings(settings):
    if settings.SWAP_STRATEGY == "two_leg":
        intermediate = get_token(settings.INTERMEDIATE_ASSET)
        if intermediate is None:
            raise ValueError(f"Unsupported INTERMEDIATE_ASSET: {settings.INTERMEDIATE_ASSET}")
        return TwoLegSwapStrategy(intermediate)
    return DirectSwapStrategy()


def leg_payload(record: TransactionRecord) -> LegPayload:
    meta = swap_meta(record)
    return LegPayload(
        batch_id=record.batch_id,
        kind=record.kind,
        state=record.state.value,
        quote=meta.quote,
        unsigned_transaction=meta.unsigned_transaction if record.state == TransactionState.PREPARED else None,
        anchor={
            "recentBlockhash": meta.recent_blockhash,
            "lastValidBlockHeight": meta.last_valid_block_height,
        },
        fee_estimate_lamports=meta.fee_estimate_lamports,
        slippage_bps=meta.slippage_bps,
        refresh_count=meta.refresh_count,
    )


def _dump(payload: LegPayload) -> Dict[str, Any]:
    return payload.model_dump(by_alias=True, mode="json")


@dataclass
class PrepareResult:
    batch_id: str
    deposit: TransactionRecord
    leg: TransactionRecord


@dataclass
class ExecuteResult:
    batch_id: str
    record: TransactionRecord
    signature: str
    amount_received: float
    explorer_url: str
    goal: Goal
    next_leg: Optional[TransactionRecord] = None
    next_leg_error: Optional[ServiceError] = None


class InvestmentOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        solana: SolanaClient,
        jupiter: JupiterClient,
        settings,
        *,
        strategy=None,
        submitter: Optional[TransactionSubmitter] = None,
        ladder: Optional[SlippageLadder] = None,
    ) -> None:
        self.db = db
        self.solana = solana
        self.jupiter = jupiter
        self.settings = settings
        self.strategy = strategy or strategy_from_settings(settings)
        self.submitter = submitter or TransactionSubmitter.from_settings(solana, settings)
        self.ladder = ladder or SlippageLadder.from_settings(settings)

    @property
    def network(self) -> str:
        return network_label(self.settings.is_devnet)

    def _legs_for(self, goal: Goal) -> ServiceResult[List[Leg]]:
        deposit = get_token(self.settings.DEPOSIT_ASSET)
        goal_asset = get_token(goal.asset_symbol)
        if deposit is None or goal_asset is None:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, f"Unsupported asset: {goal.asset_symbol}")
        if deposit.mint == goal_asset.mint:
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR,
                f"Goal asset {goal_asset.symbol} is the deposit asset; nothing to swap",
            )
        return ServiceResult.success(self.strategy.legs(deposit, goal_asset))

    @staticmethod
    def _inactive_goal_error(goal: Goal) -> ServiceResult:
        if goal.status == GoalStatus.COMPLETED:
            return ServiceResult.failure(ErrorCode.GOAL_ALREADY_COMPLETED, "Goal is already completed")
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Goal must be ACTIVE to invest")

    async def _rebuild(self, meta: SwapMeta, slippage_bps: int) -> ServiceResult[PreparedSwap]:
        quoted = await acquire_quote(
            self.jupiter,
            meta.input_mint,
            meta.output_mint,
            int(meta.in_amount or 0),
            slippage_bps,
            self.settings.QUOTE_TTL_SECONDS,
        )
        if not quoted.ok:
            return ServiceResult.from_error(quoted.error)
        return await prepare_swap(self.jupiter, self.solana, quoted.value, meta.wallet_address)

    async def _refresh(
        self,
        record: TransactionRecord,
        expected: TransactionState,
        reason: str = "BLOCKHASH_EXPIRED",
    ) -> ServiceResult[TransactionRecord]:
        meta = swap_meta(record)
        rebuilt = await self._rebuild(meta, meta.slippage_bps)
        if not rebuilt.ok:
            # Record keeps its state; the reason is kept for audit and the caller may retry
            await note_failure(self.db, record, f"Refresh failed: {rebuilt.error.message}")
            return ServiceResult.from_error(rebuilt.error)

        updated = await mark_refreshed(self.db, record, expected, rebuilt.value, reason)
        if updated is None:
            updated = await get_by_batch_and_kind(record.batch_id, record.kind, self.db)
        return ServiceResult.success(updated)

    async def _prepare_leg(
        self,
        batch_id: str,
        goal: Goal,
        leg: Leg,
        amount_in: int,
        amount_usd: Optional[float],
        wallet_address: str,
    ) -> ServiceResult[TransactionRecord]:
        slippage = self.ladder.initial(self.settings.DEFAULT_SLIPPAGE_BPS)

        async def build_leg() -> ServiceResult[TransactionRecord]:
            quoted = await acquire_quote(
                self.jupiter,
                leg.input.mint,
                leg.output.mint,
                amount_in,
                slippage,
                self.settings.QUOTE_TTL_SECONDS,
            )
            if not quoted.ok:
                return ServiceResult.from_error(quoted.error)
            prepared = await prepare_swap(self.jupiter, self.solana, quoted.value, wallet_address)
            if not prepared.ok:
                return ServiceResult.from_error(prepared.error)
            return ServiceResult.success(
                new_swap_record(goal.id, leg.kind, prepared.value, amount_usd, self.network, wallet_address)
            )

        guarded = await ensure_once(self.db, batch_id, leg.kind, build_leg)
        if not guarded.ok:
            return ServiceResult.from_error(guarded.error)

        record = guarded.value.record
        if not guarded.value.created and record.state == TransactionState.PREPARED:
            meta = swap_meta(record)
            if await self.submitter.is_anchor_expired(meta.last_valid_block_height):
                logger.info(f"Prepared {leg.kind.value} for batch {batch_id} has an expired anchor; refreshing")
                return await self._refresh(record, TransactionState.PREPARED)
        return ServiceResult.success(record)

    async def _prepare_next_leg(self, goal: Goal, previous: TransactionRecord) -> ServiceResult[TransactionRecord]:
        legs_res = self._legs_for(goal)
        if not legs_res.ok:
            return ServiceResult.from_error(legs_res.error)
        legs = legs_res.value
        kinds = [leg.kind for leg in legs]
        if previous.kind not in kinds or kinds.index(previous.kind) == len(legs) - 1:
            return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "No further leg for this batch")
        leg = legs[kinds.index(previous.kind) + 1]

        prev_meta = swap_meta(previous)
        # Strictly the confirmed output of the previous leg, never a client figure
        amount_in = int(prev_meta.received_base_units or 0)
        if amount_in <= 0:
            return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "Previous leg has no confirmed output")
        return await self._prepare_leg(
            previous.batch_id, goal, leg, amount_in, previous.amount_usd, prev_meta.wallet_address
        )

    async def _find_leg_record(
        self,
        batch_id: str,
        legs: List[Leg],
        kind: Optional[TransactionKind],
    ) -> Optional[TransactionRecord]:
        if kind is not None:
            return await get_by_batch_and_kind(batch_id, kind, self.db)
        last = None
        for leg in legs:
            record = await get_by_batch_and_kind(batch_id, leg.kind, self.db)
            if record is None:
                break
            last = record
            if record.state != TransactionState.CONFIRMED:
                return record
        return last

    async def _following_record(self, record: TransactionRecord, legs: List[Leg]) -> Optional[TransactionRecord]:
        kinds = [leg.kind for leg in legs]
        if record.kind not in kinds or kinds.index(record.kind) == len(kinds) - 1:
            return None
        return await get_by_batch_and_kind(record.batch_id, kinds[kinds.index(record.kind) + 1], self.db)

    async def _received_amount(self, signature: str, meta: SwapMeta) -> Tuple[int, str]:
        try:
            delta = await self.solana.get_balance_delta(signature, meta.wallet_address, meta.output_mint)
        except (RpcError, httpx.HTTPError) as e:
            logger.warning(f"Could not read balance delta for {signature}: {e}")
            delta = None
        if delta is not None and delta > 0:
            return delta, "onchain"

        # Server-stored quote minimum; what the swap program guaranteed to deliver
        fallback = int(meta.quote.get("otherAmountThreshold") or meta.quote.get("outAmount") or 0)
        logger.info(f"Using quote minimum {fallback} as received amount for {signature}")
        return fallback, "quote_minimum"

    async def prepare(
        self,
        user: User,
        goal_id: uuid.UUID,
        amount_usd: float,
        batch_id: Optional[str] = None,
    ) -> ServiceResult[PrepareResult]:
        if amount_usd is None or amount_usd < self.settings.MIN_INVEST_AMOUNT_USD:
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR,
                f"amountUsd must be at least {self.settings.MIN_INVEST_AMOUNT_USD} {self.settings.DEPOSIT_ASSET}",
            )

        goal = await get_goal_by_id(goal_id, user.id, self.db)
        if goal is None:
            return ServiceResult.failure(ErrorCode.GOAL_NOT_FOUND, "Goal not found")
        if goal.status != GoalStatus.ACTIVE:
            return self._inactive_goal_error(goal)

        wallet = user.wallet_address
        if not is_valid_solana_address(wallet):
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Link a Solana wallet before investing")

        legs_res = self._legs_for(goal)
        if not legs_res.ok:
            return ServiceResult.from_error(legs_res.error)
        legs = legs_res.value

        try:
            lamports = await self.solana.get_balance(wallet)
        except (RpcError, httpx.HTTPError) as e:
            logger.warning(f"SOL balance check failed for {wallet}: {e}")
            return ServiceResult.failure(ErrorCode.NETWORK_ERROR, "Could not check wallet balance, please retry", retryable=True)
        if lamports < self.settings.MIN_SOL_BALANCE_LAMPORTS:
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR,
                f"Insufficient SOL balance for network fees: have {lamports / 1e9:.4f} SOL, "
                f"need at least {self.settings.MIN_SOL_BALANCE_LAMPORTS / 1e9:.4f} SOL",
            )

        batch_id = batch_id or secrets.token_urlsafe(16)
        deposit_token = legs[0].input

        async def simulate_deposit() -> ServiceResult[TransactionRecord]:
            return ServiceResult.success(
                new_deposit_record(goal.id, amount_usd, deposit_token.mint, self.network, wallet)
            )

        deposit = await ensure_once(self.db, batch_id, TransactionKind.DEPOSIT_SIMULATION, simulate_deposit)
        if not deposit.ok:
            return ServiceResult.from_error(deposit.error)
        deposit_record = deposit.value.record
        if deposit_record.goal_id != goal.id:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "batchId already belongs to another goal")

        # Resume at the first leg that is not settled yet
        previous = None
        for index, leg in enumerate(legs):
            existing = await get_by_batch_and_kind(batch_id, leg.kind, self.db)
            if existing is not None and existing.state == TransactionState.CONFIRMED and index < len(legs) - 1:
                previous = existing
                continue
            if previous is None:
                amount_in = to_base_units(deposit_record.amount_usd, leg.input.decimals)
                leg_res = await self._prepare_leg(batch_id, goal, leg, amount_in, deposit_record.amount_usd, wallet)
            else:
                leg_res = await self._prepare_next_leg(goal, previous)
            if not leg_res.ok:
                return ServiceResult.from_error(leg_res.error)
            logger.info(f"Prepared batch {batch_id}: {leg.kind.value} state={leg_res.value.state.value}")
            return ServiceResult.success(PrepareResult(batch_id=batch_id, deposit=deposit_record, leg=leg_res.value))

        return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "No swap leg to prepare")

    async def execute(
        self,
        user: User,
        goal_id: uuid.UUID,
        batch_id: str,
        signed_transaction: str,
        kind: Optional[TransactionKind] = None,
    ) -> ServiceResult[ExecuteResult]:
        goal = await get_goal_by_id(goal_id, user.id, self.db)
        if goal is None:
            return ServiceResult.failure(ErrorCode.GOAL_NOT_FOUND, "Goal not found")

        legs_res = self._legs_for(goal)
        if not legs_res.ok:
            return ServiceResult.from_error(legs_res.error)
        legs = legs_res.value

        record = await self._find_leg_record(batch_id, legs, kind)
        if record is None or record.goal_id != goal.id or record.kind == TransactionKind.DEPOSIT_SIMULATION:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "No prepared swap found for this batch")

        if record.state == TransactionState.CONFIRMED:
            logger.info(f"Batch {batch_id} {record.kind.value} already confirmed; returning stored result")
            return ServiceResult.success(await self._result(goal, record, legs))

        if record.state == TransactionState.FAILED:
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR,
                "This batch has failed; start a new investment",
                payload={"batchId": batch_id},
            )

        decoded = decode_signed_transaction(signed_transaction)
        if not decoded.ok:
            return ServiceResult.from_error(decoded.error)
        tx = decoded.value
        meta = swap_meta(record)
        if fee_payer(tx) != meta.wallet_address:
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR, "Transaction fee payer does not match the prepared wallet"
            )

        if record.state == TransactionState.PREPARED:
            # A SUBMITTED swap may already be on chain, so it is settled whatever the goal status
            if goal.status != GoalStatus.ACTIVE:
                return self._inactive_goal_error(goal)
            if recent_blockhash(tx) != meta.recent_blockhash:
                return ServiceResult.failure(
                    ErrorCode.VALIDATION_ERROR,
                    "Signed transaction does not match the prepared transaction; sign the latest payload",
                    payload={"leg": _dump(leg_payload(record))},
                )
            submitted = await mark_submitted(self.db, record, str(tx.signatures[0]))
            if submitted is None:
                current = await get_by_batch_and_kind(batch_id, record.kind, self.db)
                if current.state == TransactionState.CONFIRMED:
                    return ServiceResult.success(await self._result(goal, current, legs))
                return ServiceResult.failure(
                    ErrorCode.NETWORK_ERROR,
                    "This transaction is already being submitted, retry shortly",
                    retryable=True,
                    payload={"batchId": batch_id},
                )
            record = submitted
            outcome = await self.submitter.submit_and_confirm(tx, meta.last_valid_block_height)
        else:
            # SUBMITTED by an earlier request that did not settle: only watch it
            signature = meta.submitted_signature or str(tx.signatures[0])
            logger.info(f"Resuming confirmation of {signature} for batch {batch_id}")
            outcome = await self.submitter.wait_for_confirmation(signature, meta.last_valid_block_height)

        return await self._settle(goal, record, outcome, legs)

    async def _settle(
        self,
        goal: Goal,
        record: TransactionRecord,
        outcome: SubmissionOutcome,
        legs: List[Leg],
    ) -> ServiceResult[ExecuteResult]:
        if outcome.confirmed:
            return await self._confirm(goal, record, outcome.signature, legs)

        batch_id = record.batch_id
        meta = swap_meta(record)

        if outcome.failure == FailureKind.EXPIRED:
            refreshed = await self._refresh(record, TransactionState.SUBMITTED)
            if not refreshed.ok:
                return ServiceResult.from_error(refreshed.error)
            current = refreshed.value
            payload = leg_payload(current)
            return ServiceResult.failure(
                ErrorCode.BLOCKHASH_EXPIRED,
                "Transaction expired before confirmation; sign the refreshed transaction",
                retryable=True,
                payload={
                    "batchId": batch_id,
                    "refreshCount": payload.refresh_count,
                    "newUnsignedTransaction": payload.unsigned_transaction,
                    "anchor": payload.anchor,
                    "leg": _dump(payload),
                },
            )

        if outcome.failure == FailureKind.SLIPPAGE:
            escalation = await escalate_swap(
                self.jupiter,
                self.solana,
                self.ladder,
                input_mint=meta.input_mint,
                output_mint=meta.output_mint,
                amount_base_units=int(meta.in_amount or 0),
                current_bps=meta.slippage_bps,
                wallet_address=meta.wallet_address,
                ttl_seconds=self.settings.QUOTE_TTL_SECONDS,
            )
            if not escalation.ok:
                if escalation.error.code == ErrorCode.SLIPPAGE_EXCEEDED:
                    await mark_failed(self.db, record, TransactionState.SUBMITTED, outcome.reason or "Slippage ceiling reached")
                    escalation.error.payload.setdefault("batchId", batch_id)
                else:
                    await note_failure(self.db, record, f"Slippage re-quote failed: {escalation.error.message}")
                return ServiceResult.from_error(escalation.error)

            updated = await mark_refreshed(
                self.db,
                record,
                TransactionState.SUBMITTED,
                escalation.value.prepared,
                "SLIPPAGE_EXCEEDED",
                escalated=True,
            )
            if updated is None:
                updated = await get_by_batch_and_kind(batch_id, record.kind, self.db)
            payload = leg_payload(updated)
            return ServiceResult.failure(
                ErrorCode.SLIPPAGE_EXCEEDED,
                f"Price moved; retry at {escalation.value.slippage_bps} bps tolerance with a new signature",
                retryable=True,
                payload={
                    "batchId": batch_id,
                    "newQuote": escalation.value.prepared.quote.to_public_dict(),
                    "newUnsignedTransaction": payload.unsigned_transaction,
                    "newSlippageBps": escalation.value.slippage_bps,
                    "anchor": payload.anchor,
                    "leg": _dump(payload),
                },
            )

        if outcome.failure == FailureKind.UNCONFIRMED:
            await note_failure(self.db, record, outcome.reason or "Confirmation pending")
            return ServiceResult.failure(
                ErrorCode.NETWORK_ERROR,
                "Transaction submitted but not confirmed yet; retry to check its status",
                retryable=True,
                payload={"batchId": batch_id, "signature": outcome.signature},
            )

        await mark_failed(self.db, record, TransactionState.SUBMITTED, outcome.reason or "Rejected by the network")
        return ServiceResult.failure(
            ErrorCode.INTERNAL_ERROR,
            "Transaction was rejected by the network",
            payload={"batchId": batch_id},
        )

    async def _confirm(
        self,
        goal: Goal,
        record: TransactionRecord,
        signature: str,
        legs: List[Leg],
    ) -> ServiceResult[ExecuteResult]:
        meta = swap_meta(record)
        output = get_token(meta.output_mint)
        if output is None:
            return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "Unknown output asset on record")

        received, source = await self._received_amount(signature, meta)
        entry = await record_confirmed_swap(self.db, record, signature, received, output.decimals, source)
        if not entry.ok:
            return ServiceResult.from_error(entry.error)

        confirmed = entry.value.record
        next_leg = None
        next_leg_error = None
        if confirmed.kind == TransactionKind.INTERMEDIATE_SWAP and confirmed.state == TransactionState.CONFIRMED:
            if goal.status == GoalStatus.ACTIVE:
                prepared = await self._prepare_next_leg(goal, confirmed)
            else:
                prepared = self._inactive_goal_error(goal)
            if prepared.ok:
                next_leg = prepared.value
            else:
                # Leg one is settled; a later prepare with the same batchId resumes here
                next_leg_error = prepared.error
                logger.warning(f"Next leg for batch {confirmed.batch_id} not prepared: {prepared.error.message}")

        result = await self._result(goal, confirmed, legs)
        result.next_leg = next_leg or result.next_leg
        result.next_leg_error = next_leg_error
        return ServiceResult.success(result)

    async def _result(self, goal: Goal, record: TransactionRecord, legs: List[Leg]) -> ExecuteResult:
        fresh_goal = await reload_goal(goal.id, self.db)
        return ExecuteResult(
            batch_id=record.batch_id,
            record=record,
            signature=record.tx_hash,
            amount_received=record.amount_asset or 0.0,
            explorer_url=explorer_url(record.tx_hash, self.settings.is_devnet),
            goal=fresh_goal,
            next_leg=await self._following_record(record, legs),
        )
