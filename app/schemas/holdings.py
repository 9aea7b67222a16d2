# app/schemas/holdings.py
from typing import List, Optional
from datetime import datetime
import uuid

from pydantic import Field

from app.models.goal import GoalStatus
from app.schemas.base import CamelModel

class HoldingGoal(CamelModel):
    id: uuid.UUID
    amount: float
    target_amount: float
    status: GoalStatus

class HoldingSwap(CamelModel):
    id: uuid.UUID
    goal_id: uuid.UUID
    amount_asset: float = 0.0
    amount_usd: float = 0.0
    tx_hash: Optional[str] = None
    network: str
    provider: str
    created_at: Optional[datetime] = None

class Holding(CamelModel):
    asset_symbol: str
    total_amount: float = 0.0
    goals: List[HoldingGoal] = Field(default_factory=list)
    swaps: List[HoldingSwap] = Field(default_factory=list)

class HoldingsRead(CamelModel):
    success: bool = True
    holdings: List[Holding] = Field(default_factory=list)
