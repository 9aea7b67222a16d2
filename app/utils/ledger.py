# app/utils/ledger.py
"""
Investment ledger: the only place that writes TransactionRecord rows.

Every state change is a conditional write against the state the caller
read, so two requests racing on the same record cannot both apply it.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCode, ServiceResult
from app.crud.transaction import get_by_batch_and_kind, transition_state
from app.models.transaction import TransactionKind, TransactionRecord, TransactionState
from app.schemas.metadata import (
    DepositSimulationMeta,
    SwapMeta,
    dump_meta,
    parse_meta,
    utc_now_iso,
)
from app.utils.goal_state import apply_confirmed_swap
from app.utils.tokens import from_base_units
from app.utils.transaction_builder import PreparedSwap

logger = logging.getLogger(__name__)

PROVIDER_FAUCET = "FAUCET"
PROVIDER_JUPITER = "JUPITER"


@dataclass
class LedgerEntry:
    record: TransactionRecord
    credited: bool
    goal_completed: bool = False
    amount: float = 0.0


def swap_meta(record: TransactionRecord) -> SwapMeta:
    return parse_meta(record.meta, record.kind.value)


def new_deposit_record(
    goal_id: uuid.UUID,
    amount_usd: float,
    asset_mint: str,
    network: str,
    wallet_address: str,
) -> TransactionRecord:
    """Simulated on-ramp: confirmed at creation, never touches the chain."""
    meta = DepositSimulationMeta(simulated=True, wallet_address=wallet_address, sol_validated=True)
    return TransactionRecord(
        goal_id=goal_id,
        kind=TransactionKind.DEPOSIT_SIMULATION,
        state=TransactionState.CONFIRMED,
        provider=PROVIDER_FAUCET,
        network=network,
        tx_hash=f"sim_{uuid.uuid4().hex}",
        amount_usd=amount_usd,
        amount_asset=amount_usd,
        asset_mint=asset_mint,
        meta=dump_meta(meta),
    )


def new_swap_record(
    goal_id: uuid.UUID,
    kind: TransactionKind,
    prepared: PreparedSwap,
    amount_usd: Optional[float],
    network: str,
    wallet_address: str,
) -> TransactionRecord:
    quote = prepared.quote
    unsigned = prepared.transaction
    meta = SwapMeta(
        kind=kind.value,
        quote_id=quote.quote_id,
        quote=quote.raw,
        input_mint=quote.input_mint,
        output_mint=quote.output_mint,
        in_amount=quote.in_amount,
        slippage_bps=quote.slippage_bps,
        unsigned_transaction=unsigned.payload,
        recent_blockhash=unsigned.anchor.blockhash,
        last_valid_block_height=unsigned.anchor.last_valid_block_height,
        fee_estimate_lamports=unsigned.fee_estimate_lamports,
        wallet_address=wallet_address,
        prepared_at=utc_now_iso(),
    )
    return TransactionRecord(
        goal_id=goal_id,
        kind=kind,
        state=TransactionState.PREPARED,
        provider=PROVIDER_JUPITER,
        network=network,
        tx_hash=None,
        amount_usd=amount_usd,
        amount_asset=None,
        asset_mint=quote.output_mint,
        meta=dump_meta(meta),
    )


async def _reload(record: TransactionRecord, db: AsyncSession) -> TransactionRecord:
    return await get_by_batch_and_kind(record.batch_id, record.kind, db)


async def mark_submitted(db: AsyncSession, record: TransactionRecord, signature: str) -> Optional[TransactionRecord]:
    """PREPARED -> SUBMITTED. Returns None when another request got there first."""
    meta = swap_meta(record)
    meta.submitted_at = utc_now_iso()
    meta.submitted_signature = signature
    moved = await transition_state(
        record.id, TransactionState.PREPARED, TransactionState.SUBMITTED, db, meta=dump_meta(meta)
    )
    if not moved:
        await db.commit()
        logger.info(f"Record {record.id} was no longer PREPARED; skipping submission")
        return None
    await db.commit()
    return await _reload(record, db)


async def mark_refreshed(
    db: AsyncSession,
    record: TransactionRecord,
    expected: TransactionState,
    prepared: PreparedSwap,
    reason: str,
    escalated: bool = False,
) -> Optional[TransactionRecord]:
    """
    Back to PREPARED with a freshly built transaction.

    An expiry refresh bumps refreshCount by one; a slippage escalation bumps
    escalationCount and stores the new tolerance instead.
    """
    meta = swap_meta(record)
    quote = prepared.quote
    unsigned = prepared.transaction
    meta.quote_id = quote.quote_id
    meta.quote = quote.raw
    meta.in_amount = quote.in_amount
    meta.slippage_bps = quote.slippage_bps
    meta.unsigned_transaction = unsigned.payload
    meta.recent_blockhash = unsigned.anchor.blockhash
    meta.last_valid_block_height = unsigned.anchor.last_valid_block_height
    meta.fee_estimate_lamports = unsigned.fee_estimate_lamports
    meta.submitted_signature = None
    meta.last_refresh_reason = reason
    meta.refreshed_at = utc_now_iso()
    if escalated:
        meta.escalation_count += 1
    else:
        meta.refresh_count += 1

    moved = await transition_state(
        record.id, expected, TransactionState.PREPARED, db, tx_hash=None, meta=dump_meta(meta)
    )
    if not moved:
        await db.commit()
        logger.info(f"Record {record.id} left {expected.value} before refresh could apply")
        return None
    await db.commit()
    logger.info(
        f"Refreshed {record.kind.value} record {record.id} ({reason}); "
        f"refreshCount={meta.refresh_count} escalationCount={meta.escalation_count}"
    )
    return await _reload(record, db)


async def mark_failed(
    db: AsyncSession,
    record: TransactionRecord,
    expected: TransactionState,
    reason: str,
) -> TransactionRecord:
    meta = swap_meta(record)
    meta.failure_reason = reason
    moved = await transition_state(record.id, expected, TransactionState.FAILED, db, meta=dump_meta(meta))
    if not moved:
        await db.commit()
        logger.info(f"Record {record.id} left {expected.value}; failure not recorded")
        return await _reload(record, db)
    await db.commit()
    logger.error(f"{record.kind.value} record {record.id} FAILED: {reason}")
    return await _reload(record, db)


async def note_failure(db: AsyncSession, record: TransactionRecord, reason: str) -> TransactionRecord:
    """Persist a failure reason without changing state (audit trail for retryable errors)."""
    meta = swap_meta(record)
    meta.failure_reason = reason
    await transition_state(record.id, record.state, record.state, db, meta=dump_meta(meta))
    await db.commit()
    return await _reload(record, db)


async def record_confirmed_swap(
    db: AsyncSession,
    record: TransactionRecord,
    signature: str,
    received_base_units: int,
    decimals: int,
    amount_source: str = "onchain",
) -> ServiceResult[LedgerEntry]:
    """
    Stamp SUBMITTED -> CONFIRMED and credit the goal in one database transaction.

    Only SWAP records move the goal; an INTERMEDIATE_SWAP just records what it
    delivered for the next leg. If the record already left SUBMITTED nothing
    is written and the stored row is returned.
    """
    amount = float(from_base_units(received_base_units, decimals))
    meta = swap_meta(record)
    meta.received_base_units = int(received_base_units)
    meta.amount_source = amount_source
    meta.confirmed_at = utc_now_iso()
    meta.failure_reason = None

    try:
        moved = await transition_state(
            record.id,
            TransactionState.SUBMITTED,
            TransactionState.CONFIRMED,
            db,
            tx_hash=signature,
            amount_asset=amount,
            meta=dump_meta(meta),
        )
        if not moved:
            await db.commit()
            stored = await _reload(record, db)
            logger.info(f"Record {record.id} already settled as {stored.state.value}; no credit applied")
            return ServiceResult.success(LedgerEntry(record=stored, credited=False))

        completed = False
        if record.kind == TransactionKind.SWAP:
            completed = await apply_confirmed_swap(db, record.goal_id, amount)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Ledger write for record {record.id} failed, rolled back: {e}")
        return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "Could not record confirmed transaction")

    logger.info(f"Ledger: {record.kind.value} {record.id} confirmed {amount} ({amount_source}) sig={signature}")
    stored = await _reload(record, db)
    return ServiceResult.success(LedgerEntry(record=stored, credited=True, goal_completed=completed, amount=amount))
