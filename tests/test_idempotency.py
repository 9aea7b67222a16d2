import asyncio

import pytest
from sqlalchemy import func, select

from app.core.database import AsyncSessionLocal
from app.core.errors import ErrorCode, ServiceResult
from app.models.transaction import TransactionKind, TransactionRecord
from app.utils.idempotency import ensure_once
from app.utils.ledger import new_deposit_record


@pytest.mark.asyncio
async def test_second_call_reuses_record_without_running_operation(db_session, btc_goal, user):
    calls = []

    async def operation():
        calls.append(1)
        return ServiceResult.success(new_deposit_record(btc_goal.id, 25.0, "mint", "DEVNET", user.wallet_address))

    first = await ensure_once(db_session, "batch-0001", TransactionKind.DEPOSIT_SIMULATION, operation)
    second = await ensure_once(db_session, "batch-0001", TransactionKind.DEPOSIT_SIMULATION, operation)

    assert first.value.created is True
    assert second.value.created is False
    assert second.value.record.id == first.value.record.id
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_failed_operation_persists_nothing(db_session):
    async def operation():
        return ServiceResult.failure(ErrorCode.NO_ROUTE, "no route")

    result = await ensure_once(db_session, "batch-0002", TransactionKind.SWAP, operation)
    assert result.error.code == ErrorCode.NO_ROUTE

    count = await db_session.execute(select(func.count(TransactionRecord.id)))
    assert count.scalar() == 0


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_record(database, btc_goal, user):
    goal_id = btc_goal.id
    wallet_address = user.wallet_address

    async def guarded():
        async with AsyncSessionLocal() as session:
            async def operation():
                # Let the other caller pass its existence check too
                await asyncio.sleep(0.01)
                return ServiceResult.success(new_deposit_record(goal_id, 25.0, "mint", "DEVNET", wallet_address))

            result = await ensure_once(session, "batch-race", TransactionKind.DEPOSIT_SIMULATION, operation)
            assert result.ok
            return result.value.record.id, result.value.created

    outcomes = await asyncio.gather(guarded(), guarded())

    assert outcomes[0][0] == outcomes[1][0]
    assert sorted(created for _, created in outcomes) == [False, True]

    async with AsyncSessionLocal() as session:
        count = await session.execute(
            select(func.count(TransactionRecord.id)).where(TransactionRecord.batch_id == "batch-race")
        )
        assert count.scalar() == 1
