# app/api/v1/routes/holdings.py
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.core.auth import User
from app.core.database import get_async_session
from app.crud.goal import get_goals_for_user
from app.crud.transaction import get_confirmed_swaps_for_user
from app.schemas.holdings import HoldingsRead
from app.utils.holdings import build_holdings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/holdings", tags=["holdings"])

@router.get("", response_model=HoldingsRead)
async def read_holdings(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """Goals grouped by asset, with the confirmed swaps that funded them."""
    goals = await get_goals_for_user(user.id, db)
    swaps = await get_confirmed_swaps_for_user(user.id, db)
    holdings = build_holdings(goals, swaps)
    logger.info(f"Holdings for user {user.id}: {len(holdings)} assets")
    return HoldingsRead(holdings=holdings)
