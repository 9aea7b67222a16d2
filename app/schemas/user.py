# app/schemas/user.py
from typing import Optional
from datetime import datetime
import uuid

from pydantic import Field

from app.schemas.base import CamelModel

# Public fields returned on GET /users/me
class UserRead(CamelModel):
    id: uuid.UUID
    email: str
    full_name: Optional[str] = None
    wallet_address: Optional[str] = None
    is_active: bool
    is_superuser: bool
    created_at: Optional[datetime] = None

# Fields accepted on PATCH /users/me/wallet
class WalletUpdate(CamelModel):
    wallet_address: str = Field(..., min_length=32, max_length=64)
