# app/api/v1/routes/internal_transfer.py
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from app.api.deps import get_admin_user, get_request_id, get_transfer_service
from app.core.auth import User
from app.core.errors import ErrorCode, ServiceError, error_response
from app.schemas.transfer import (
    TransferPrepareResponse,
    TransferRead,
    TransferRequest,
    TransferSubmitResponse,
)
from app.utils.transfers import TransferService, transfer_meta

router = APIRouter(prefix="/internal/solana", tags=["internal"])

@router.post("/transfer")
async def internal_transfer(
    body: TransferRequest,
    request: Request,
    admin: User = Depends(get_admin_user),
    service: TransferService = Depends(get_transfer_service),
):
    """Admin-only two-phase SOL transfer (`mode` prepare or submit, keyed by `batchId`)."""
    request_id = get_request_id(request)

    if body.resolved_mode == "prepare":
        result = await service.prepare(
            admin,
            body.batch_id,
            from_user_id=body.from_user_id,
            from_address=body.from_address,
            to_address=body.to_address,
            amount_sol=body.amount_sol,
            memo=body.memo,
            request_id=request_id,
        )
        if not result.ok:
            return error_response(result.error, request_id)
        transfer = result.value
        meta = transfer_meta(transfer)
        return TransferPrepareResponse(
            transfer=TransferRead.model_validate(transfer),
            unsigned_transaction=meta.unsigned_transaction,
            anchor={
                "recentBlockhash": meta.recent_blockhash,
                "lastValidBlockHeight": meta.last_valid_block_height,
            },
            fee_estimate_lamports=meta.fee_estimate_lamports,
        )

    if not body.signed_transaction:
        return error_response(
            ServiceError(code=ErrorCode.VALIDATION_ERROR, message="signedTransaction is required in submit mode"),
            request_id,
        )
    result = await service.submit(admin, body.batch_id, body.signed_transaction)
    if not result.ok:
        return error_response(result.error, request_id)
    submitted = result.value
    response = TransferSubmitResponse(
        transfer=TransferRead.model_validate(submitted.transfer),
        signature=submitted.signature,
        explorer_url=submitted.explorer_url,
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=jsonable_encoder(response))
