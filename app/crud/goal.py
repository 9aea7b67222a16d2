# app/crud/goal.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func
from app.models.goal import Goal
from app.models.transaction import TransactionRecord
from typing import List, Optional
import uuid
from app.schemas.goal import GoalCreate

async def get_goals_for_user(user_id: uuid.UUID, db: AsyncSession) -> List[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == user_id).order_by(Goal.created_at.desc())
    )
    return result.unique().scalars().all()

async def get_goal_by_id(goal_id: uuid.UUID, user_id: uuid.UUID, db: AsyncSession) -> Optional[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id)
    )
    return result.unique().scalar_one_or_none()

async def reload_goal(goal_id: uuid.UUID, db: AsyncSession) -> Optional[Goal]:
    """Fetch a goal bypassing the identity map (after SQL-level updates)."""
    result = await db.execute(
        select(Goal).where(Goal.id == goal_id).execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()

async def create_goal_for_user(user_id: uuid.UUID, goal_in: GoalCreate, db: AsyncSession) -> Goal:
    data = goal_in.model_dump()
    data["asset_symbol"] = data["asset_symbol"].strip().upper()
    new_goal = Goal(**data, user_id=user_id, invested_amount=0.0)
    db.add(new_goal)
    await db.commit()
    await db.refresh(new_goal)
    return new_goal

async def update_goal(goal: Goal, changes: dict, db: AsyncSession) -> Goal:
    for field, value in changes.items():
        setattr(goal, field, value)
    db.add(goal)
    await db.commit()
    await db.refresh(goal)
    return goal

async def delete_goal(goal: Goal, db: AsyncSession) -> None:
    await db.delete(goal)
    await db.commit()

async def count_transactions(goal_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(TransactionRecord.id)).where(TransactionRecord.goal_id == goal_id)
    )
    return int(result.scalar() or 0)
