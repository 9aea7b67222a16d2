# app/schemas/transfer.py
from typing import Any, Dict, Literal, Optional
from datetime import datetime
import uuid

from pydantic import Field

from app.models.transaction import TransactionState
from app.schemas.base import CamelModel

class TransferRequest(CamelModel):
    # Inferred from signedTransaction when omitted
    mode: Optional[Literal["prepare", "submit"]] = None
    batch_id: str = Field(..., min_length=8, max_length=64)

    from_user_id: Optional[uuid.UUID] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount_sol: Optional[float] = Field(None, gt=0)
    memo: Optional[str] = Field(None, max_length=255)

    signed_transaction: Optional[str] = None

    @property
    def resolved_mode(self) -> str:
        if self.mode:
            return self.mode
        return "submit" if self.signed_transaction else "prepare"

class TransferRead(CamelModel):
    id: uuid.UUID
    batch_id: str
    admin_user_id: uuid.UUID
    source_user_id: Optional[uuid.UUID] = None
    source_address: str
    destination_address: str
    lamports: int
    memo: Optional[str] = None
    signature: Optional[str] = None
    state: TransactionState
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class TransferPrepareResponse(CamelModel):
    success: bool = True
    mode: str = "prepare"
    transfer: TransferRead
    unsigned_transaction: Optional[str] = None
    anchor: Dict[str, Any] = Field(default_factory=dict)
    fee_estimate_lamports: Optional[int] = None

class TransferSubmitResponse(CamelModel):
    success: bool = True
    mode: str = "submit"
    transfer: TransferRead
    signature: str
    explorer_url: str
