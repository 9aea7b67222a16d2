# app/api/v1/routes/invest.py
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_current_user, get_investment_orchestrator, get_request_id
from app.core.auth import User
from app.core.errors import error_response
from app.crud.goal import count_transactions
from app.schemas.goal import GoalRead
from app.schemas.invest import (
    InvestExecuteRequest,
    InvestExecuteResponse,
    InvestPrepareRequest,
    InvestPrepareResponse,
)
from app.schemas.transaction import TransactionRead
from app.utils.invest import InvestmentOrchestrator, leg_payload

router = APIRouter(prefix="/invest", tags=["invest"])

@router.post("/prepare", response_model=InvestPrepareResponse)
async def prepare_investment(
    body: InvestPrepareRequest,
    request: Request,
    user: User = Depends(get_current_user),
    orchestrator: InvestmentOrchestrator = Depends(get_investment_orchestrator),
):
    """
    Simulate the deposit and return the unsigned swap for the wallet to sign.

    Calling again with the same `batchId` returns the same records (a stale
    unsigned transaction is rebuilt against a fresh blockhash).
    """
    result = await orchestrator.prepare(user, body.goal_id, body.amount_usd, body.batch_id)
    if not result.ok:
        return error_response(result.error, get_request_id(request))

    prepared = result.value
    leg = leg_payload(prepared.leg)
    return InvestPrepareResponse(
        batch_id=prepared.batch_id,
        deposit=TransactionRead.model_validate(prepared.deposit),
        leg=leg,
        quote=leg.quote,
        unsigned_transaction=leg.unsigned_transaction,
        anchor=leg.anchor,
        fee_estimate_lamports=leg.fee_estimate_lamports,
        slippage_bps=leg.slippage_bps,
        refresh_count=leg.refresh_count,
    )

@router.post("/execute", response_model=InvestExecuteResponse)
async def execute_investment(
    body: InvestExecuteRequest,
    request: Request,
    user: User = Depends(get_current_user),
    orchestrator: InvestmentOrchestrator = Depends(get_investment_orchestrator),
):
    """Submit the signed swap, wait for confirmation and credit the goal."""
    result = await orchestrator.execute(user, body.goal_id, body.batch_id, body.signed_transaction, body.kind)
    if not result.ok:
        return error_response(result.error, get_request_id(request))

    executed = result.value
    return InvestExecuteResponse(
        batch_id=executed.batch_id,
        kind=executed.record.kind,
        network_reference=executed.signature,
        amount_received=executed.amount_received,
        explorer_url=executed.explorer_url,
        goal=GoalRead.from_goal(executed.goal, await count_transactions(executed.goal.id, orchestrator.db)),
        transaction=TransactionRead.model_validate(executed.record),
        next_leg=leg_payload(executed.next_leg) if executed.next_leg else None,
        next_leg_error=executed.next_leg_error.to_body() if executed.next_leg_error else None,
    )
