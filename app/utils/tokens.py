# app/utils/tokens.py
"""
Supported assets and exact human <-> base unit conversion.

Conversions use Decimal and always truncate toward zero so the service never
asks the router for more than the user actually has.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, InvalidOperation
from typing import Dict, Optional, Union

from app.core.solana import NATIVE_SOL_MINT


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    mint: str
    decimals: int
    # Largest goal target we accept for this asset
    max_target: float


SUPPORTED_TOKENS: Dict[str, TokenInfo] = {
    "USDC": TokenInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6, 10_000_000),
    "SOL": TokenInfo("SOL", NATIVE_SOL_MINT, 9, 1_000_000),
    "BTC": TokenInfo("BTC", "3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh", 8, 1_000),
    "ETH": TokenInfo("ETH", "7vfCXTUXx5WJV5JADk17DBJ4ksgau7utNKj4b963voxs", 8, 10_000),
    "BONK": TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5, 1_000_000_000_000),
}

_BY_MINT: Dict[str, TokenInfo] = {t.mint: t for t in SUPPORTED_TOKENS.values()}

Number = Union[int, float, str, Decimal]


def get_token(symbol_or_mint: Optional[str]) -> Optional[TokenInfo]:
    if not symbol_or_mint:
        return None
    value = symbol_or_mint.strip()
    return SUPPORTED_TOKENS.get(value.upper()) or _BY_MINT.get(value)


def is_supported_asset(symbol: Optional[str]) -> bool:
    return bool(symbol) and symbol.strip().upper() in SUPPORTED_TOKENS


def _as_decimal(amount: Number) -> Decimal:
    # str() first so floats keep their shortest repr instead of binary noise
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Not a number: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Not a finite number: {amount!r}")
    return value


def to_base_units(amount: Number, decimals: int) -> int:
    """Human amount -> integer base units, truncated toward zero."""
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    value = _as_decimal(amount)
    if value < 0:
        raise ValueError("amount must be >= 0")
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(base_units: int, decimals: int) -> Decimal:
    if decimals < 0:
        raise ValueError("decimals must be >= 0")
    return Decimal(int(base_units)).scaleb(-decimals)


def network_label(devnet: bool) -> str:
    return "DEVNET" if devnet else "MAINNET"
