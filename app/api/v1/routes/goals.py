# app/api/v1/routes/goals.py
import logging
from typing import List
import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_request_id
from app.core.auth import User
from app.core.database import get_async_session
from app.core.errors import ErrorCode, ServiceError, error_response
from app.crud.goal import (
    count_transactions,
    create_goal_for_user,
    delete_goal,
    get_goal_by_id,
    get_goals_for_user,
    update_goal,
)
from app.crud.transaction import get_transactions_for_goal
from app.models.goal import GoalStatus
from app.schemas.goal import GoalCreate, GoalRead, GoalUpdate
from app.schemas.transaction import TransactionRead
from app.utils.goal_state import validate_goal_target, validate_status_transition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/goals", tags=["goals"])

def _not_found(request: Request):
    return error_response(
        ServiceError(code=ErrorCode.GOAL_NOT_FOUND, message="Goal not found"),
        get_request_id(request),
    )

@router.get("", response_model=List[GoalRead])
async def read_goals(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    goals = await get_goals_for_user(user.id, db)
    return [GoalRead.from_goal(goal, await count_transactions(goal.id, db)) for goal in goals]

@router.post("", response_model=GoalRead, status_code=status.HTTP_201_CREATED)
async def create_goal(
    goal_in: GoalCreate,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """
    Create a goal to accumulate `targetAmount` of `assetSymbol`.

    - **amountPerInterval**: USD per interval, at least 10
    - **frequency**: DAILY, WEEKLY or MONTHLY
    """
    error = validate_goal_target(goal_in.asset_symbol, goal_in.target_amount)
    if error:
        return error_response(error, get_request_id(request))

    goal = await create_goal_for_user(user.id, goal_in, db)
    logger.info(f"User {user.id} created goal {goal.id} for {goal.target_amount} {goal.asset_symbol}")
    return GoalRead.from_goal(goal)

@router.get("/{goal_id}", response_model=GoalRead)
async def read_goal(
    goal_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    goal = await get_goal_by_id(goal_id, user.id, db)
    if not goal:
        return _not_found(request)
    return GoalRead.from_goal(goal, await count_transactions(goal.id, db))

@router.patch("/{goal_id}", response_model=GoalRead)
async def update_goal_endpoint(
    goal_id: uuid.UUID,
    goal_in: GoalUpdate,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    goal = await get_goal_by_id(goal_id, user.id, db)
    if not goal:
        return _not_found(request)

    changes = goal_in.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        return error_response(
            ServiceError(code=ErrorCode.VALIDATION_ERROR, message="No fields provided for update"),
            get_request_id(request),
        )

    if "status" in changes:
        error = validate_status_transition(goal.status, changes["status"])
        if error:
            logger.info(f"Rejected status change on goal {goal.id}: {error.message}")
            return error_response(error, get_request_id(request))

    if goal.status == GoalStatus.COMPLETED:
        return error_response(
            ServiceError(code=ErrorCode.GOAL_ALREADY_COMPLETED, message="Goal is already completed"),
            get_request_id(request),
        )

    goal = await update_goal(goal, changes, db)
    return GoalRead.from_goal(goal, await count_transactions(goal.id, db))

@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal_endpoint(
    goal_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    goal = await get_goal_by_id(goal_id, user.id, db)
    if not goal:
        return _not_found(request)
    await delete_goal(goal, db)
    logger.info(f"User {user.id} deleted goal {goal_id}")

@router.get("/{goal_id}/transactions", response_model=List[TransactionRead])
async def read_goal_transactions(
    goal_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    goal = await get_goal_by_id(goal_id, user.id, db)
    if not goal:
        return _not_found(request)
    return await get_transactions_for_goal(goal.id, db)
