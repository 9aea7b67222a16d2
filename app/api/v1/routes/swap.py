# app/api/v1/routes/swap.py
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_current_user, get_request_id, get_swap_service
from app.core.auth import User
from app.core.errors import error_response
from app.schemas.swap import SwapExecuteResponse, SwapQuoteResponse, SwapRequest
from app.utils.swap import SwapService

router = APIRouter(prefix="/swap", tags=["swap"])

@router.post("")
async def swap(
    body: SwapRequest,
    request: Request,
    user: User = Depends(get_current_user),
    service: SwapService = Depends(get_swap_service),
):
    """
    `mode=quote` returns a quote plus an unsigned transaction for the caller's wallet.
    `mode=execute` submits the signed transaction; retryable failures carry
    `newQuote`, `newUnsignedTransaction` and `newSlippageBps`.
    """
    if body.mode == "quote":
        result = await service.quote(
            user.wallet_address,
            body.input_asset,
            body.output_asset,
            body.amount_base_units,
            body.tolerance_bps,
        )
        if not result.ok:
            return error_response(result.error, get_request_id(request))
        prepared = result.value
        return SwapQuoteResponse(
            quote=prepared.quote.to_public_dict(),
            unsigned_transaction=prepared.transaction.payload,
            anchor=prepared.transaction.anchor.to_dict(),
            fee_estimate_lamports=prepared.transaction.fee_estimate_lamports,
        )

    result = await service.execute(
        user.wallet_address,
        body.input_asset,
        body.output_asset,
        body.amount_base_units,
        body.tolerance_bps,
        body.signed_transaction,
        body.quote_response,
        body.last_valid_block_height,
    )
    if not result.ok:
        return error_response(result.error, get_request_id(request))
    return SwapExecuteResponse(
        network_reference=result.value.signature,
        explorer_url=result.value.explorer_url,
    )
