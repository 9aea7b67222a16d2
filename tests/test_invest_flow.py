import pytest
from solders.keypair import Keypair

from app.core.config import settings
from app.core.errors import ErrorCode
from app.core.solana import RpcError
from app.crud.goal import reload_goal
from app.crud.transaction import get_batch, get_by_batch_and_kind
from app.models.goal import GoalStatus
from app.models.transaction import TransactionKind, TransactionState
from app.utils.invest import InvestmentOrchestrator, TwoLegSwapStrategy
from app.utils.ledger import swap_meta
from app.utils.slippage import SlippageLadder
from app.utils.tokens import get_token
from tests.mocks.clients import build_unsigned, sign, signature_of
from tests.mocks.factories import make_goal

SLIPPAGE_ERROR = "Transaction simulation failed: Error processing Instruction 3: custom program error: 0x1771"


@pytest.fixture
def orchestrator(db_session, solana, jupiter, submitter, ladder):
    return InvestmentOrchestrator(db_session, solana, jupiter, settings, submitter=submitter, ladder=ladder)


async def _prepare(orchestrator, user, goal, batch_id="batch-000001", amount_usd=25.0):
    result = await orchestrator.prepare(user, goal.id, amount_usd, batch_id)
    assert result.ok, result.error
    return result.value


def _sign_leg(record, wallet):
    return sign(swap_meta(record).unsigned_transaction, wallet)


@pytest.mark.asyncio
async def test_prepare_creates_deposit_and_unsigned_swap(orchestrator, user, btc_goal, jupiter):
    prepared = await _prepare(orchestrator, user, btc_goal)

    assert prepared.deposit.kind == TransactionKind.DEPOSIT_SIMULATION
    assert prepared.deposit.state == TransactionState.CONFIRMED
    assert prepared.deposit.tx_hash.startswith("sim_")
    assert prepared.deposit.network == "DEVNET"

    leg = prepared.leg
    assert leg.kind == TransactionKind.SWAP
    assert leg.state == TransactionState.PREPARED
    assert leg.tx_hash is None
    meta = swap_meta(leg)
    assert meta.in_amount == 25_000_000
    assert meta.slippage_bps == 50
    assert meta.unsigned_transaction
    assert meta.wallet_address == user.wallet_address
    assert jupiter.quote_calls[0]["inputMint"] == get_token("USDC").mint
    assert jupiter.quote_calls[0]["outputMint"] == get_token("BTC").mint


@pytest.mark.asyncio
async def test_prepare_is_idempotent_per_batch(orchestrator, user, btc_goal, jupiter, db_session):
    first = await _prepare(orchestrator, user, btc_goal)
    second = await _prepare(orchestrator, user, btc_goal)

    assert second.deposit.id == first.deposit.id
    assert second.leg.id == first.leg.id
    assert jupiter.swap_calls == 1
    assert len(await get_batch("batch-000001", db_session)) == 2


@pytest.mark.asyncio
async def test_prepare_refreshes_stale_anchor_on_resume(orchestrator, user, btc_goal, solana):
    first = await _prepare(orchestrator, user, btc_goal)
    old_payload = swap_meta(first.leg).unsigned_transaction

    solana.block_height = 10_000
    second = await _prepare(orchestrator, user, btc_goal)

    meta = swap_meta(second.leg)
    assert second.leg.id == first.leg.id
    assert meta.refresh_count == 1
    assert meta.unsigned_transaction != old_payload
    assert meta.last_valid_block_height == 10_150


@pytest.mark.asyncio
async def test_execute_confirms_and_credits_goal(orchestrator, user, btc_goal, wallet, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    signed = _sign_leg(prepared.leg, wallet)

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert result.ok, result.error
    executed = result.value
    assert executed.signature == signature_of(signed)
    assert executed.record.state == TransactionState.CONFIRMED
    assert "cluster=devnet" in executed.explorer_url
    # 25 USDC at the fake rate is 250_000 sats; 50 bps off for the quote minimum
    assert executed.amount_received == pytest.approx(0.0024875)
    assert swap_meta(executed.record).amount_source == "quote_minimum"
    assert executed.goal.invested_amount == pytest.approx(0.0024875)


@pytest.mark.asyncio
async def test_execute_prefers_onchain_amount(orchestrator, user, btc_goal, wallet, solana):
    prepared = await _prepare(orchestrator, user, btc_goal)
    signed = _sign_leg(prepared.leg, wallet)
    solana.deltas[signature_of(signed)] = 249_000

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert result.value.amount_received == pytest.approx(0.00249)
    assert swap_meta(result.value.record).amount_source == "onchain"


@pytest.mark.asyncio
async def test_execute_replay_returns_stored_result(orchestrator, user, btc_goal, wallet, solana, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    signed = _sign_leg(prepared.leg, wallet)

    first = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)
    second = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert second.ok
    assert second.value.signature == first.value.signature
    assert len(solana.sent) == 1
    goal = await reload_goal(btc_goal.id, db_session)
    assert goal.invested_amount == pytest.approx(0.0024875)


@pytest.mark.asyncio
async def test_expired_blockhash_refreshes_same_batch(orchestrator, user, btc_goal, wallet, solana, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    old_payload = swap_meta(prepared.leg).unsigned_transaction
    signed = _sign_leg(prepared.leg, wallet)

    solana.block_height = 10_000
    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert not result.ok
    error = result.error
    assert error.code == ErrorCode.BLOCKHASH_EXPIRED
    assert error.retryable is True
    assert error.payload["batchId"] == prepared.batch_id
    assert error.payload["refreshCount"] == 1
    assert error.payload["newUnsignedTransaction"] != old_payload
    assert solana.sent == []

    record = await get_by_batch_and_kind(prepared.batch_id, TransactionKind.SWAP, db_session)
    assert record.state == TransactionState.PREPARED
    assert record.id == prepared.leg.id

    retried = sign(error.payload["newUnsignedTransaction"], wallet)
    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, retried)
    assert result.ok, result.error
    assert result.value.signature == signature_of(retried)


@pytest.mark.asyncio
async def test_stale_signature_is_rejected_after_refresh(orchestrator, user, btc_goal, wallet, solana):
    prepared = await _prepare(orchestrator, user, btc_goal)
    stale = _sign_leg(prepared.leg, wallet)

    solana.block_height = 10_000
    await orchestrator.execute(user, btc_goal.id, prepared.batch_id, stale)
    solana.block_height = 100

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, stale)
    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert result.error.payload["leg"]["refreshCount"] == 1


@pytest.mark.asyncio
async def test_slippage_escalates_one_step(orchestrator, user, btc_goal, wallet, solana, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    solana.send_errors.append(RpcError("sendTransaction", SLIPPAGE_ERROR))

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, _sign_leg(prepared.leg, wallet))

    error = result.error
    assert error.code == ErrorCode.SLIPPAGE_EXCEEDED
    assert error.retryable is True
    assert error.payload["newSlippageBps"] == 100
    assert error.payload["newQuote"]["slippageBps"] == 100
    assert error.payload["batchId"] == prepared.batch_id

    record = await get_by_batch_and_kind(prepared.batch_id, TransactionKind.SWAP, db_session)
    meta = swap_meta(record)
    assert record.state == TransactionState.PREPARED
    assert meta.slippage_bps == 100
    assert meta.escalation_count == 1
    assert meta.refresh_count == 0

    retried = sign(error.payload["newUnsignedTransaction"], wallet)
    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, retried)
    assert result.ok, result.error


@pytest.mark.asyncio
async def test_slippage_past_ceiling_fails_batch(db_session, solana, jupiter, submitter, user, btc_goal, wallet):
    orchestrator = InvestmentOrchestrator(
        db_session, solana, jupiter, settings, submitter=submitter, ladder=SlippageLadder([50], 50)
    )
    prepared = await _prepare(orchestrator, user, btc_goal)
    solana.send_errors.append(RpcError("sendTransaction", SLIPPAGE_ERROR))
    signed = _sign_leg(prepared.leg, wallet)

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert result.error.code == ErrorCode.SLIPPAGE_EXCEEDED
    assert result.error.retryable is False
    assert result.error.status_code == 422
    record = await get_by_batch_and_kind(prepared.batch_id, TransactionKind.SWAP, db_session)
    assert record.state == TransactionState.FAILED
    assert swap_meta(record).failure_reason == SLIPPAGE_ERROR

    again = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)
    assert again.error.code == ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_rejected_transaction_fails_batch(orchestrator, user, btc_goal, wallet, solana, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    solana.send_errors.append(RpcError("sendTransaction", "Attempt to debit an account but found no record of a prior credit."))

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, _sign_leg(prepared.leg, wallet))

    assert result.error.code == ErrorCode.INTERNAL_ERROR
    record = await get_by_batch_and_kind(prepared.batch_id, TransactionKind.SWAP, db_session)
    assert record.state == TransactionState.FAILED
    goal = await reload_goal(btc_goal.id, db_session)
    assert goal.invested_amount == 0.0


@pytest.mark.asyncio
async def test_unconfirmed_submission_resumes(orchestrator, user, btc_goal, wallet, solana, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    signed = _sign_leg(prepared.leg, wallet)
    solana.auto_confirm = False

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert result.error.code == ErrorCode.NETWORK_ERROR
    assert result.error.retryable is True
    assert result.error.payload["signature"] == signature_of(signed)
    record = await get_by_batch_and_kind(prepared.batch_id, TransactionKind.SWAP, db_session)
    assert record.state == TransactionState.SUBMITTED

    solana.auto_confirm = True
    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)
    assert result.ok, result.error
    assert len(solana.sent) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status,invested", [(GoalStatus.PAUSED, 0.0), (GoalStatus.COMPLETED, 0.01)])
async def test_in_flight_swap_settles_after_goal_leaves_active(
    orchestrator, user, btc_goal, wallet, solana, db_session, status, invested
):
    prepared = await _prepare(orchestrator, user, btc_goal)
    signed = _sign_leg(prepared.leg, wallet)
    solana.auto_confirm = False
    pending = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)
    assert pending.error.code == ErrorCode.NETWORK_ERROR

    # completed by a parallel batch, or paused by the user, while this swap is in flight
    btc_goal.status = status
    btc_goal.invested_amount = invested
    await db_session.commit()

    solana.auto_confirm = True
    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert result.ok, result.error
    assert result.value.record.state == TransactionState.CONFIRMED
    goal = await reload_goal(btc_goal.id, db_session)
    assert goal.invested_amount == pytest.approx(invested + 0.0024875)
    assert goal.status == status
    assert len(solana.sent) == 1


@pytest.mark.asyncio
async def test_prepared_swap_is_not_sent_for_paused_goal(orchestrator, user, btc_goal, wallet, solana, db_session):
    prepared = await _prepare(orchestrator, user, btc_goal)
    signed = _sign_leg(prepared.leg, wallet)

    btc_goal.status = GoalStatus.PAUSED
    await db_session.commit()

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, signed)

    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert solana.sent == []
    record = await get_by_batch_and_kind(prepared.batch_id, TransactionKind.SWAP, db_session)
    assert record.state == TransactionState.PREPARED


@pytest.mark.asyncio
async def test_fee_payer_must_match_wallet(orchestrator, user, btc_goal):
    prepared = await _prepare(orchestrator, user, btc_goal)
    other = Keypair()
    forged = sign(build_unsigned(str(other.pubkey()), swap_meta(prepared.leg).recent_blockhash), other)

    result = await orchestrator.execute(user, btc_goal.id, prepared.batch_id, forged)
    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert "fee payer" in result.error.message


@pytest.mark.asyncio
async def test_prepare_guards(orchestrator, user, db_session, solana):
    paused = await make_goal(db_session, user, status=GoalStatus.PAUSED)
    result = await orchestrator.prepare(user, paused.id, 25.0, "batch-paused")
    assert result.error.code == ErrorCode.VALIDATION_ERROR

    completed = await make_goal(db_session, user, status=GoalStatus.COMPLETED)
    result = await orchestrator.prepare(user, completed.id, 25.0, "batch-done")
    assert result.error.code == ErrorCode.GOAL_ALREADY_COMPLETED

    usdc_goal = await make_goal(db_session, user, asset="USDC", target=100)
    result = await orchestrator.prepare(user, usdc_goal.id, 25.0, "batch-usdc")
    assert result.error.code == ErrorCode.VALIDATION_ERROR

    active = await make_goal(db_session, user)
    solana.balances[user.wallet_address] = 1_000
    result = await orchestrator.prepare(user, active.id, 25.0, "batch-poor")
    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert "Insufficient SOL" in result.error.message

    assert await get_batch("batch-poor", db_session) == []


@pytest.mark.asyncio
async def test_no_route_is_reported(orchestrator, user, btc_goal, jupiter):
    jupiter.no_route = True
    result = await orchestrator.prepare(user, btc_goal.id, 25.0, "batch-noroute")
    assert result.error.code == ErrorCode.NO_ROUTE


@pytest.mark.asyncio
async def test_two_leg_batch_chains_confirmed_output(db_session, solana, jupiter, submitter, ladder, user, btc_goal, wallet):
    orchestrator = InvestmentOrchestrator(
        db_session,
        solana,
        jupiter,
        settings,
        strategy=TwoLegSwapStrategy(get_token("SOL")),
        submitter=submitter,
        ladder=ladder,
    )
    prepared = await _prepare(orchestrator, user, btc_goal, batch_id="batch-twoleg")
    assert prepared.leg.kind == TransactionKind.INTERMEDIATE_SWAP

    first = await orchestrator.execute(user, btc_goal.id, "batch-twoleg", _sign_leg(prepared.leg, wallet))
    assert first.ok, first.error
    assert first.value.record.kind == TransactionKind.INTERMEDIATE_SWAP
    # intermediate legs never move the goal
    assert first.value.goal.invested_amount == 0.0

    next_leg = first.value.next_leg
    assert next_leg is not None
    assert next_leg.kind == TransactionKind.SWAP
    assert next_leg.state == TransactionState.PREPARED
    leg_one_received = swap_meta(first.value.record).received_base_units
    assert swap_meta(next_leg).in_amount == leg_one_received
    assert swap_meta(next_leg).input_mint == get_token("SOL").mint

    second = await orchestrator.execute(user, btc_goal.id, "batch-twoleg", _sign_leg(next_leg, wallet))
    assert second.ok, second.error
    assert second.value.record.kind == TransactionKind.SWAP
    assert second.value.goal.invested_amount > 0
    assert len(await get_batch("batch-twoleg", db_session)) == 3
