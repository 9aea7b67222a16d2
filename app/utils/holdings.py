# app/utils/holdings.py
"""
Per-asset read model over a user's goals.

The total is the sum of the goals' invested amounts, which only confirmed
swaps ever move; the swap list is the confirmed SWAP records behind it.
"""
from typing import Dict, List, Sequence, Tuple

from app.models.goal import Goal
from app.models.transaction import TransactionRecord
from app.schemas.holdings import Holding, HoldingGoal, HoldingSwap


def build_holdings(goals: Sequence[Goal], swaps: Sequence[Tuple[TransactionRecord, str]]) -> List[Holding]:
    by_asset: Dict[str, Holding] = {}

    for goal in goals:
        holding = by_asset.setdefault(goal.asset_symbol, Holding(asset_symbol=goal.asset_symbol))
        amount = goal.invested_amount or 0.0
        holding.total_amount += amount
        holding.goals.append(
            HoldingGoal(id=goal.id, amount=amount, target_amount=goal.target_amount, status=goal.status)
        )

    for record, asset_symbol in swaps:
        holding = by_asset.setdefault(asset_symbol, Holding(asset_symbol=asset_symbol))
        holding.swaps.append(
            HoldingSwap(
                id=record.id,
                goal_id=record.goal_id,
                amount_asset=record.amount_asset or 0.0,
                amount_usd=record.amount_usd or 0.0,
                tx_hash=record.tx_hash,
                network=record.network,
                provider=record.provider,
                created_at=record.created_at,
            )
        )

    # Assets with nothing invested and no confirmed swap are left out
    return [h for h in by_asset.values() if h.total_amount > 0 or h.swaps]
