import pytest

from app.crud.goal import reload_goal
from app.models.goal import GoalStatus
from app.models.transaction import TransactionKind, TransactionRecord, TransactionState
from app.schemas.metadata import SwapMeta, dump_meta
from app.utils.ledger import record_confirmed_swap, swap_meta
from app.utils.tokens import get_token
from tests.mocks.factories import make_goal

BTC = get_token("BTC")


async def _submitted_record(db, goal, kind=TransactionKind.SWAP, batch_id="ledger-batch"):
    meta = SwapMeta(kind=kind.value, output_mint=BTC.mint, in_amount=1_000_000, submitted_signature="sig")
    record = TransactionRecord(
        goal_id=goal.id,
        batch_id=batch_id,
        kind=kind,
        state=TransactionState.SUBMITTED,
        provider="JUPITER",
        network="DEVNET",
        asset_mint=BTC.mint,
        meta=dump_meta(meta),
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


@pytest.mark.asyncio
async def test_confirmation_credits_goal_and_completes_it(db_session, user):
    goal = await make_goal(db_session, user, target=1.0, invested=0.999999)
    record = await _submitted_record(db_session, goal)

    result = await record_confirmed_swap(db_session, record, "sig-final", 200, BTC.decimals)

    assert result.ok
    entry = result.value
    assert entry.credited is True
    assert entry.goal_completed is True
    assert entry.amount == pytest.approx(0.000002)
    assert entry.record.state == TransactionState.CONFIRMED
    assert entry.record.tx_hash == "sig-final"
    assert swap_meta(entry.record).received_base_units == 200

    fresh = await reload_goal(goal.id, db_session)
    assert fresh.invested_amount == pytest.approx(1.000001)
    assert fresh.status == GoalStatus.COMPLETED


@pytest.mark.asyncio
async def test_replayed_confirmation_does_not_double_credit(db_session, user):
    goal = await make_goal(db_session, user, target=1.0)
    record = await _submitted_record(db_session, goal)

    await record_confirmed_swap(db_session, record, "sig-once", 10_000_000, BTC.decimals)
    replay = await record_confirmed_swap(db_session, record, "sig-once", 10_000_000, BTC.decimals)

    assert replay.ok
    assert replay.value.credited is False
    fresh = await reload_goal(goal.id, db_session)
    assert fresh.invested_amount == pytest.approx(0.1)
    assert fresh.status == GoalStatus.ACTIVE


@pytest.mark.asyncio
async def test_intermediate_leg_does_not_move_goal(db_session, user):
    goal = await make_goal(db_session, user, target=1.0)
    record = await _submitted_record(db_session, goal, kind=TransactionKind.INTERMEDIATE_SWAP)

    result = await record_confirmed_swap(db_session, record, "sig-leg1", 5_000_000, 9, "quote_minimum")

    assert result.value.credited is True
    assert result.value.goal_completed is False
    assert swap_meta(result.value.record).amount_source == "quote_minimum"
    fresh = await reload_goal(goal.id, db_session)
    assert fresh.invested_amount == 0.0


@pytest.mark.asyncio
async def test_completed_goal_stays_completed(db_session, user):
    goal = await make_goal(db_session, user, target=0.5, invested=0.6, status=GoalStatus.COMPLETED)
    record = await _submitted_record(db_session, goal)

    result = await record_confirmed_swap(db_session, record, "sig-late", 100, BTC.decimals)

    assert result.value.goal_completed is False
    fresh = await reload_goal(goal.id, db_session)
    assert fresh.status == GoalStatus.COMPLETED
