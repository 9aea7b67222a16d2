# app/utils/quotes.py
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx

from app.core.errors import ErrorCode, ServiceResult
from app.core.jupiter import JupiterClient, JupiterError, RouteNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    # Jupiter's otherAmountThreshold: least the swap may deliver at this slippage
    min_received: int
    price_impact_pct: float
    slippage_bps: int
    expires_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict)
    quote_id: str = field(default_factory=lambda: f"q_{secrets.token_hex(8)}")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "quoteId": self.quote_id,
            "inputMint": self.input_mint,
            "outputMint": self.output_mint,
            "inAmount": str(self.in_amount),
            "outAmount": str(self.out_amount),
            "minReceived": str(self.min_received),
            "priceImpactPct": self.price_impact_pct,
            "slippageBps": self.slippage_bps,
            "expiresAt": self.expires_at.isoformat() + "Z",
            "quoteResponse": self.raw,
        }

    @classmethod
    def from_response(cls, raw: Dict[str, Any], ttl_seconds: int, quote_id: Optional[str] = None) -> "Quote":
        out_amount = int(raw.get("outAmount") or 0)
        quote = cls(
            input_mint=str(raw.get("inputMint") or ""),
            output_mint=str(raw.get("outputMint") or ""),
            in_amount=int(raw.get("inAmount") or 0),
            out_amount=out_amount,
            min_received=int(raw.get("otherAmountThreshold") or out_amount),
            price_impact_pct=float(raw.get("priceImpactPct") or 0.0),
            slippage_bps=int(raw.get("slippageBps") or 0),
            expires_at=datetime.utcnow() + timedelta(seconds=ttl_seconds),
            raw=raw,
        )
        if quote_id:
            quote.quote_id = quote_id
        return quote


async def acquire_quote(
    jupiter: JupiterClient,
    input_mint: str,
    output_mint: str,
    amount_base_units: int,
    slippage_bps: int,
    ttl_seconds: int = 30,
) -> ServiceResult[Quote]:
    if amount_base_units <= 0:
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Amount is too small to swap")
    if input_mint == output_mint:
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Input and output assets must differ")
    if not 0 < slippage_bps <= 10_000:
        return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Slippage must be between 1 and 10000 bps")

    try:
        raw = await jupiter.get_quote(input_mint, output_mint, amount_base_units, slippage_bps)
    except RouteNotFoundError as e:
        logger.info(f"No route {input_mint} -> {output_mint} for {amount_base_units}: {e}")
        return ServiceResult.failure(ErrorCode.NO_ROUTE, "No swap route available for this pair and amount")
    except (JupiterError, httpx.HTTPError) as e:
        logger.warning(f"Quote request failed {input_mint} -> {output_mint}: {e}")
        return ServiceResult.failure(
            ErrorCode.NETWORK_ERROR,
            "Quote service unavailable, please retry",
            retryable=True,
        )

    quote = Quote.from_response(raw, ttl_seconds)
    quote.slippage_bps = slippage_bps
    logger.info(
        f"Quote {quote.quote_id}: {quote.in_amount} {input_mint[:6]}.. -> {quote.out_amount} "
        f"{output_mint[:6]}.. (min {quote.min_received}, slippage {slippage_bps}bps)"
    )
    return ServiceResult.success(quote)
