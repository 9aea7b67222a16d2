# app/crud/internal_transfer.py
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update
from app.models.internal_transfer import InternalTransfer
from app.models.transaction import TransactionState
from typing import Any, Dict, Optional
import uuid

async def get_transfer_by_batch(batch_id: str, db: AsyncSession) -> Optional[InternalTransfer]:
    result = await db.execute(
        select(InternalTransfer)
        .where(InternalTransfer.batch_id == batch_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def transition_transfer(
    transfer_id: uuid.UUID,
    expected: TransactionState,
    new_state: TransactionState,
    db: AsyncSession,
    **values: Any,
) -> bool:
    result = await db.execute(
        update(InternalTransfer)
        .where(InternalTransfer.id == transfer_id, InternalTransfer.state == expected)
        .values(state=new_state, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

async def save_transfer(transfer: InternalTransfer, meta: Dict[str, Any], db: AsyncSession, **values: Any) -> InternalTransfer:
    transfer.meta = dict(meta)
    for field, value in values.items():
        setattr(transfer, field, value)
    db.add(transfer)
    await db.commit()
    await db.refresh(transfer)
    return transfer
