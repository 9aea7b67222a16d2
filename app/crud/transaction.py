# app/crud/transaction.py
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update
from app.models.goal import Goal
from app.models.transaction import TransactionKind, TransactionRecord, TransactionState
from typing import Any, List, Optional, Tuple
import uuid

async def get_transactions_for_goal(goal_id: uuid.UUID, db: AsyncSession) -> List[TransactionRecord]:
    result = await db.execute(
        select(TransactionRecord)
        .where(TransactionRecord.goal_id == goal_id)
        .order_by(TransactionRecord.created_at.desc())
    )
    return result.scalars().all()

async def get_confirmed_swaps_for_user(user_id: uuid.UUID, db: AsyncSession) -> List[Tuple[TransactionRecord, str]]:
    result = await db.execute(
        select(TransactionRecord, Goal.asset_symbol)
        .join(Goal, TransactionRecord.goal_id == Goal.id)
        .where(
            Goal.user_id == user_id,
            TransactionRecord.kind == TransactionKind.SWAP,
            TransactionRecord.state == TransactionState.CONFIRMED,
        )
        .order_by(TransactionRecord.created_at.desc())
    )
    return [(record, asset_symbol) for record, asset_symbol in result.all()]

async def get_by_batch_and_kind(batch_id: str, kind: TransactionKind, db: AsyncSession) -> Optional[TransactionRecord]:
    result = await db.execute(
        select(TransactionRecord)
        .where(TransactionRecord.batch_id == batch_id, TransactionRecord.kind == kind)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_batch(batch_id: str, db: AsyncSession) -> List[TransactionRecord]:
    result = await db.execute(
        select(TransactionRecord)
        .where(TransactionRecord.batch_id == batch_id)
        .order_by(TransactionRecord.created_at)
    )
    return result.scalars().all()

async def transition_state(
    record_id: uuid.UUID,
    expected: TransactionState,
    new_state: TransactionState,
    db: AsyncSession,
    **values: Any,
) -> bool:
    """
    Conditional write: move a record from `expected` to `new_state`.

    Returns False when another request already moved it. Does not commit.
    """
    result = await db.execute(
        update(TransactionRecord)
        .where(TransactionRecord.id == record_id, TransactionRecord.state == expected)
        .values(state=new_state, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
