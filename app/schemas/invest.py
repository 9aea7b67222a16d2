# app/schemas/invest.py
from typing import Any, Dict, Optional
import uuid

from pydantic import Field

from app.models.transaction import TransactionKind
from app.schemas.base import CamelModel
from app.schemas.goal import GoalRead
from app.schemas.transaction import TransactionRead

class InvestPrepareRequest(CamelModel):
    goal_id: uuid.UUID
    amount_usd: float = Field(..., gt=0)
    # Generated server-side when omitted; resend the same value to resume a batch
    batch_id: Optional[str] = Field(None, min_length=8, max_length=64)

class InvestExecuteRequest(CamelModel):
    goal_id: uuid.UUID
    batch_id: str = Field(..., min_length=8, max_length=64)
    signed_transaction: str = Field(..., min_length=1)
    kind: Optional[TransactionKind] = None

class LegPayload(CamelModel):
    """Everything a client needs to sign one swap leg."""
    batch_id: str
    kind: TransactionKind
    state: str
    quote: Dict[str, Any] = Field(default_factory=dict)
    unsigned_transaction: Optional[str] = None
    anchor: Dict[str, Any] = Field(default_factory=dict)
    fee_estimate_lamports: Optional[int] = None
    slippage_bps: int
    refresh_count: int = 0

class InvestPrepareResponse(CamelModel):
    success: bool = True
    batch_id: str
    deposit: TransactionRead
    leg: LegPayload
    # Flattened from `leg` for clients that only handle a single swap
    quote: Dict[str, Any] = Field(default_factory=dict)
    unsigned_transaction: Optional[str] = None
    anchor: Dict[str, Any] = Field(default_factory=dict)
    fee_estimate_lamports: Optional[int] = None
    slippage_bps: int
    refresh_count: int = 0

class InvestExecuteResponse(CamelModel):
    success: bool = True
    batch_id: str
    kind: TransactionKind
    network_reference: str
    amount_received: float
    explorer_url: str
    goal: GoalRead
    transaction: TransactionRead
    next_leg: Optional[LegPayload] = None
    next_leg_error: Optional[Dict[str, Any]] = None
