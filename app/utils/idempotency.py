# app/utils/idempotency.py
"""
At-most-once record creation keyed by (batch_id, kind).

The unique constraint on the transactions table is the race-breaker: two
concurrent callers may both run their operation, but only one insert wins
and the loser reads the winner's row back. Nothing is locked in-process.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCode, ServiceResult
from app.crud.transaction import get_by_batch_and_kind
from app.models.transaction import TransactionKind, TransactionRecord

logger = logging.getLogger(__name__)

RecordFactory = Callable[[], Awaitable[ServiceResult[TransactionRecord]]]


@dataclass
class GuardedRecord:
    record: TransactionRecord
    created: bool


async def reload_session_objects(db: AsyncSession) -> None:
    """A rollback expires every loaded instance; load them back so callers can keep using them."""
    for instance in list(db.identity_map.values()):
        await db.refresh(instance)


async def ensure_once(
    db: AsyncSession,
    batch_id: str,
    kind: TransactionKind,
    operation: RecordFactory,
) -> ServiceResult[GuardedRecord]:
    existing = await get_by_batch_and_kind(batch_id, kind, db)
    if existing is not None:
        logger.info(f"Reusing {kind.value} record for batch {batch_id} (state={existing.state.value})")
        return ServiceResult.success(GuardedRecord(existing, created=False))

    built = await operation()
    if not built.ok:
        logger.warning(f"{kind.value} operation for batch {batch_id} failed: {built.error.message}")
        return ServiceResult.from_error(built.error)

    record = built.value
    record.batch_id = batch_id
    record.kind = kind
    db.add(record)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        await reload_session_objects(db)
        winner = await get_by_batch_and_kind(batch_id, kind, db)
        if winner is None:
            logger.error(f"Insert of {kind.value} for batch {batch_id} conflicted but no row was found")
            return ServiceResult.failure(ErrorCode.INTERNAL_ERROR, "Could not persist transaction record")
        logger.info(f"Lost insert race for {kind.value} batch {batch_id}; using existing record")
        return ServiceResult.success(GuardedRecord(winner, created=False))

    await db.refresh(record)
    logger.info(f"Created {kind.value} record {record.id} for batch {batch_id}")
    return ServiceResult.success(GuardedRecord(record, created=True))
