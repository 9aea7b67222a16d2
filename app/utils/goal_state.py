# app/utils/goal_state.py
"""
Goal status rules.

ACTIVE <-> PAUSED only on explicit user request. COMPLETED is reached only
through `apply_confirmed_swap` once invested >= target, and is terminal.
"""
import logging
import uuid
from datetime import datetime
from typing import Dict, Optional, Set

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ErrorCode, ServiceError
from app.models.goal import Goal, GoalStatus
from app.utils.tokens import get_token

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[GoalStatus, Set[GoalStatus]] = {
    GoalStatus.ACTIVE: {GoalStatus.PAUSED},
    GoalStatus.PAUSED: {GoalStatus.ACTIVE},
    GoalStatus.COMPLETED: set(),
}


def validate_status_transition(current: GoalStatus, requested: GoalStatus) -> Optional[ServiceError]:
    if requested == GoalStatus.COMPLETED or requested not in ALLOWED_TRANSITIONS.get(current, set()):
        return ServiceError(
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            message=f"Cannot change goal status from {current.value} to {requested.value}",
        )
    return None


def calculate_progress(invested_amount: float, target_amount: float) -> float:
    if target_amount <= 0:
        return 0.0
    progress = (invested_amount / target_amount) * 100
    return min(round(progress, 2), 100.0)


def remaining_amount(invested_amount: float, target_amount: float) -> float:
    return max(target_amount - invested_amount, 0.0)


def validate_goal_target(asset_symbol: str, target_amount: float) -> Optional[ServiceError]:
    token = get_token(asset_symbol)
    if token is None or token.symbol != (asset_symbol or "").strip().upper():
        return ServiceError(code=ErrorCode.VALIDATION_ERROR, message=f"Unsupported asset: {asset_symbol}")
    if target_amount <= 0 or target_amount > token.max_target:
        return ServiceError(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"targetAmount must be greater than 0 and at most {token.max_target:g} {token.symbol}",
        )
    return None


async def apply_confirmed_swap(db: AsyncSession, goal_id: uuid.UUID, amount: float) -> bool:
    """
    Credit `amount` to the goal and auto-complete it when the target is reached.

    Both statements run inside the caller's transaction; the caller commits.
    Returns True when this credit completed the goal.
    """
    if amount <= 0:
        logger.warning(f"Ignoring non-positive credit {amount} for goal {goal_id}")
        return False

    now = datetime.utcnow()
    await db.execute(
        update(Goal)
        .where(Goal.id == goal_id)
        .values(invested_amount=Goal.invested_amount + amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        update(Goal)
        .where(
            Goal.id == goal_id,
            Goal.status != GoalStatus.COMPLETED,
            Goal.invested_amount >= Goal.target_amount,
        )
        .values(status=GoalStatus.COMPLETED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    completed = result.rowcount == 1
    if completed:
        logger.info(f"Goal {goal_id} reached its target and is now COMPLETED")
    return completed
