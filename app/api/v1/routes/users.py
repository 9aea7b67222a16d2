# app/api/v1/routes/users.py
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_request_id
from app.core.auth import User
from app.core.database import get_async_session
from app.core.errors import ErrorCode, ServiceError, error_response
from app.core.solana import is_valid_solana_address
from app.crud.user import update_wallet_address
from app.schemas.user import UserRead, WalletUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

# 1) GET /users/me
@router.get("/me", response_model=UserRead)
async def read_own_profile(user: User = Depends(get_current_user)):
    """Get current user's profile"""
    return user

# 2) PATCH /users/me/wallet
@router.patch("/me/wallet", response_model=UserRead)
async def link_wallet(
    wallet_in: WalletUpdate,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """Link the Solana wallet the user signs investments with"""
    address = wallet_in.wallet_address.strip()
    if not is_valid_solana_address(address):
        return error_response(
            ServiceError(code=ErrorCode.VALIDATION_ERROR, message="walletAddress is not a valid Solana address"),
            get_request_id(request),
        )
    user = await update_wallet_address(user, address, db)
    logger.info(f"User {user.id} linked wallet {address}")
    return user
