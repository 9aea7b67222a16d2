# app/schemas/swap.py
from typing import Any, Dict, Literal, Optional

from pydantic import Field, model_validator

from app.schemas.base import CamelModel

class SwapRequest(CamelModel):
    input_asset: str = Field(..., description="Token symbol or mint address")
    output_asset: str = Field(..., description="Token symbol or mint address")
    amount_base_units: int = Field(..., gt=0)
    tolerance_bps: int = Field(50, ge=1, le=10_000)
    mode: Literal["quote", "execute"] = "quote"

    # execute mode
    signed_transaction: Optional[str] = None
    quote_response: Optional[Dict[str, Any]] = None
    last_valid_block_height: Optional[int] = None

    @model_validator(mode="after")
    def check_execute_fields(self):
        if self.mode == "execute" and not (self.signed_transaction and self.quote_response):
            raise ValueError("execute mode requires signedTransaction and quoteResponse")
        return self

class SwapQuoteResponse(CamelModel):
    success: bool = True
    quote: Dict[str, Any]
    unsigned_transaction: str
    anchor: Dict[str, Any]
    fee_estimate_lamports: Optional[int] = None

class SwapExecuteResponse(CamelModel):
    success: bool = True
    network_reference: str
    explorer_url: str
