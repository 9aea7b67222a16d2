# app/schemas/transaction.py
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from pydantic import Field

from app.models.transaction import TransactionKind, TransactionState
from app.schemas.base import CamelModel

class TransactionRead(CamelModel):
    id: uuid.UUID
    goal_id: uuid.UUID
    batch_id: str
    kind: TransactionKind
    state: TransactionState
    provider: str
    network: str
    tx_hash: Optional[str] = None
    amount_usd: Optional[float] = None
    amount_asset: Optional[float] = None
    asset_mint: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
