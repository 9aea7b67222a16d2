# app/api/deps.py
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import jwt
import uuid

from app.core.database import get_async_session
from app.core.auth import User, decode_access_token
from app.core.config import settings
from app.core.jupiter import JupiterClient
from app.core.solana import SolanaClient
from app.utils.invest import InvestmentOrchestrator
from app.utils.swap import SwapService
from app.utils.transfers import TransferService

# Security schemes
optional_security = HTTPBearer(auto_error=False)

def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security)
) -> User:
    """
    Resolve the caller from a bearer token found in:
    - Authorization header
    - Query parameters
    - Cookies
    """
    token = None

    # From Authorization header
    if credentials and credentials.credentials:
        token = credentials.credentials

    # From query parameter
    if not token:
        token = request.query_params.get("token") or request.query_params.get("access_token")

    # From cookie
    if not token:
        token = request.cookies.get("access_token")
        # Remove "Bearer " prefix if present in cookie
        if token and token.startswith("Bearer "):
            token = token[7:]

    if not token:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise _unauthorized("Invalid token: missing user ID")

    try:
        user_id = uuid.UUID(str(user_id_str))
    except ValueError:
        raise _unauthorized("Invalid user ID format in token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalars().first()

    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("Inactive user")

    return user

async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_superuser:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user

def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)

# Network clients are created at startup (app/main.py) and live on app.state
def get_solana_client(request: Request) -> SolanaClient:
    return request.app.state.solana

def get_jupiter_client(request: Request) -> JupiterClient:
    return request.app.state.jupiter

def get_investment_orchestrator(
    db: AsyncSession = Depends(get_async_session),
    solana: SolanaClient = Depends(get_solana_client),
    jupiter: JupiterClient = Depends(get_jupiter_client),
) -> InvestmentOrchestrator:
    return InvestmentOrchestrator(db, solana, jupiter, settings)

def get_swap_service(
    solana: SolanaClient = Depends(get_solana_client),
    jupiter: JupiterClient = Depends(get_jupiter_client),
) -> SwapService:
    return SwapService(solana, jupiter, settings)

def get_transfer_service(
    db: AsyncSession = Depends(get_async_session),
    solana: SolanaClient = Depends(get_solana_client),
) -> TransferService:
    return TransferService(db, solana, settings)
