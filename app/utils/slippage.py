# app/utils/slippage.py
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from app.core.errors import ErrorCode, ServiceResult
from app.core.jupiter import JupiterClient
from app.core.solana import SolanaClient
from app.utils.quotes import acquire_quote
from app.utils.transaction_builder import PreparedSwap, prepare_swap

logger = logging.getLogger(__name__)


class SlippageLadder:
    """
    Fixed ascending tolerance steps (bps) capped by a ceiling.

    Rungs above the ceiling are dropped at construction, so nothing handed
    out by the ladder can exceed it.
    """

    def __init__(self, steps: Iterable[int], ceiling_bps: int) -> None:
        if ceiling_bps <= 0:
            raise ValueError("ceiling_bps must be positive")
        self.ceiling_bps = int(ceiling_bps)
        self.steps: List[int] = sorted({int(s) for s in steps if 0 < int(s) <= self.ceiling_bps})
        if not self.steps:
            raise ValueError("slippage ladder has no step within the ceiling")

    @classmethod
    def from_settings(cls, settings) -> "SlippageLadder":
        return cls(settings.SLIPPAGE_LADDER_BPS, settings.SLIPPAGE_CEILING_BPS)

    def initial(self, requested_bps: Optional[int] = None) -> int:
        """Starting tolerance: the requested value clamped to the ceiling, else the first rung."""
        if requested_bps is None:
            return self.steps[0]
        return max(1, min(int(requested_bps), self.ceiling_bps))

    def next_step(self, current_bps: int) -> Optional[int]:
        for step in self.steps:
            if step > current_bps:
                return step
        return None

    def allows(self, bps: int) -> bool:
        return 0 < bps <= self.ceiling_bps

    def __repr__(self) -> str:
        return f"SlippageLadder(steps={self.steps}, ceiling={self.ceiling_bps})"


@dataclass
class Escalation:
    slippage_bps: int
    prepared: PreparedSwap


async def escalate_swap(
    jupiter: JupiterClient,
    solana: SolanaClient,
    ladder: SlippageLadder,
    *,
    input_mint: str,
    output_mint: str,
    amount_base_units: int,
    current_bps: int,
    wallet_address: str,
    ttl_seconds: int,
) -> ServiceResult[Escalation]:
    """Re-quote and rebuild one rung up. No rung left is a terminal SLIPPAGE_EXCEEDED."""
    next_bps = ladder.next_step(current_bps)
    if next_bps is None:
        logger.warning(f"Slippage ceiling reached at {current_bps}bps ({ladder})")
        return ServiceResult.failure(
            ErrorCode.SLIPPAGE_EXCEEDED,
            f"Price moved beyond the maximum tolerance of {ladder.ceiling_bps} bps",
            retryable=False,
            status_code=422,
        )

    logger.info(f"Escalating slippage {current_bps}bps -> {next_bps}bps for {input_mint[:6]}.. -> {output_mint[:6]}..")
    quoted = await acquire_quote(jupiter, input_mint, output_mint, amount_base_units, next_bps, ttl_seconds)
    if not quoted.ok:
        return ServiceResult.from_error(quoted.error)
    prepared = await prepare_swap(jupiter, solana, quoted.value, wallet_address)
    if not prepared.ok:
        return ServiceResult.from_error(prepared.error)
    return ServiceResult.success(Escalation(slippage_bps=next_bps, prepared=prepared.value))
