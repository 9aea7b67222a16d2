# app/schemas/goal.py
from typing import Optional
from datetime import datetime
import uuid

from pydantic import Field

from app.models.goal import GoalFrequency, GoalStatus
from app.schemas.base import CamelModel
from app.utils.goal_state import calculate_progress, remaining_amount
from app.utils.tokens import get_token

class GoalCreate(CamelModel):
    asset_symbol: str = Field(..., min_length=1, max_length=16, description="E.g. BTC, ETH, SOL")
    target_amount: float = Field(..., gt=0, description="Goal size in units of the asset")
    amount_per_interval: float = Field(..., ge=10, description="USD invested per interval")
    frequency: GoalFrequency

# Status changes go through the goal state machine; COMPLETED is never accepted here
class GoalUpdate(CamelModel):
    amount_per_interval: Optional[float] = Field(None, ge=10)
    frequency: Optional[GoalFrequency] = None
    status: Optional[GoalStatus] = None

class GoalRead(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    asset_symbol: str
    target_amount: float
    invested_amount: float
    amount_per_interval: float
    frequency: GoalFrequency
    status: GoalStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Derived fields
    progress_percentage: float = 0.0
    remaining_amount: float = 0.0
    token_mint: Optional[str] = None
    decimals: Optional[int] = None
    transaction_count: int = 0

    @classmethod
    def from_goal(cls, goal, transaction_count: int = 0) -> "GoalRead":
        token = get_token(goal.asset_symbol)
        read = cls.model_validate(goal)
        return read.model_copy(update={
            "progress_percentage": calculate_progress(goal.invested_amount, goal.target_amount),
            "remaining_amount": remaining_amount(goal.invested_amount, goal.target_amount),
            "token_mint": token.mint if token else None,
            "decimals": token.decimals if token else None,
            "transaction_count": transaction_count,
        })
