# app/utils/transfers.py
"""
Admin-only SOL transfer between wallets, same prepare/submit pattern as
investments: prepare stores an unsigned transfer keyed by batch_id, submit
takes the externally signed payload and settles it.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import User
from app.core.errors import ErrorCode, ServiceResult
from app.core.solana import LAMPORTS_PER_SOL, RpcError, SolanaClient, explorer_url, is_valid_solana_address
from app.crud.internal_transfer import get_transfer_by_batch, save_transfer, transition_transfer
from app.crud.user import get_user_by_id
from app.models.internal_transfer import InternalTransfer
from app.models.transaction import TransactionState
from app.schemas.metadata import TransferMeta, dump_meta, parse_meta, utc_now_iso
from app.utils.idempotency import reload_session_objects
from app.utils.submission import FailureKind, SubmissionOutcome, TransactionSubmitter
from app.utils.tokens import to_base_units
from app.utils.transaction_builder import (
    UnsignedTransaction,
    build_transfer_transaction,
    decode_signed_transaction,
    fee_payer,
    recent_blockhash,
)

logger = logging.getLogger(__name__)


def transfer_meta(transfer: InternalTransfer) -> TransferMeta:
    return parse_meta(transfer.meta, "INTERNAL_TRANSFER")


def transfer_payload(transfer: InternalTransfer) -> dict:
    meta = transfer_meta(transfer)
    return {
        "batchId": transfer.batch_id,
        "state": transfer.state.value,
        "fromAddress": transfer.source_address,
        "toAddress": transfer.destination_address,
        "lamports": int(transfer.lamports),
        "amountSol": int(transfer.lamports) / LAMPORTS_PER_SOL,
        "memo": transfer.memo,
        "unsignedTransaction": meta.unsigned_transaction if transfer.state == TransactionState.PREPARED else None,
        "feeEstimateLamports": meta.fee_estimate_lamports,
        "recentBlockhash": meta.recent_blockhash,
        "lastValidBlockHeight": meta.last_valid_block_height,
        "refreshCount": meta.refresh_count,
    }


@dataclass
class SubmittedTransfer:
    transfer: InternalTransfer
    signature: str
    explorer_url: str


class TransferService:
    def __init__(
        self,
        db: AsyncSession,
        solana: SolanaClient,
        settings,
        *,
        submitter: Optional[TransactionSubmitter] = None,
    ) -> None:
        self.db = db
        self.solana = solana
        self.settings = settings
        self.submitter = submitter or TransactionSubmitter.from_settings(solana, settings)

    async def _resolve_source(
        self,
        from_user_id: Optional[uuid.UUID],
        from_address: Optional[str],
    ) -> ServiceResult[tuple]:
        source_user = None
        address = (from_address or "").strip() or None

        if not from_user_id and not address:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "fromUserId or fromAddress is required")

        if from_user_id:
            source_user = await get_user_by_id(from_user_id, self.db)
            if source_user is None:
                return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Source user not found")
            if not source_user.wallet_address:
                return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Source user does not have a linked wallet address")
            if address and address != source_user.wallet_address:
                return ServiceResult.failure(
                    ErrorCode.VALIDATION_ERROR, "fromAddress does not match the wallet on record for the user"
                )
            address = source_user.wallet_address

        if not is_valid_solana_address(address):
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Source wallet address is not a valid Solana address")
        return ServiceResult.success((source_user, address))

    async def _build(self, source: str, destination: str, lamports: int, memo: Optional[str]) -> ServiceResult[UnsignedTransaction]:
        try:
            unsigned = await build_transfer_transaction(self.solana, source, destination, lamports, memo)
        except (RpcError, httpx.HTTPError) as e:
            logger.warning(f"Could not build transfer {source} -> {destination}: {e}")
            return ServiceResult.failure(
                ErrorCode.NETWORK_ERROR, "Could not reach the Solana network, please retry", retryable=True
            )
        return ServiceResult.success(unsigned)

    @staticmethod
    def _apply_unsigned(meta: TransferMeta, unsigned: UnsignedTransaction) -> TransferMeta:
        meta.unsigned_transaction = unsigned.payload
        meta.recent_blockhash = unsigned.anchor.blockhash
        meta.last_valid_block_height = unsigned.anchor.last_valid_block_height
        meta.fee_estimate_lamports = unsigned.fee_estimate_lamports
        meta.submitted_signature = None
        return meta

    async def prepare(
        self,
        admin: User,
        batch_id: str,
        *,
        from_user_id: Optional[uuid.UUID] = None,
        from_address: Optional[str] = None,
        to_address: Optional[str] = None,
        amount_sol: Optional[float] = None,
        memo: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> ServiceResult[InternalTransfer]:
        if not is_valid_solana_address(to_address):
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Valid toAddress is required")
        if amount_sol is None or amount_sol <= 0:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "amountSol must be a positive number")
        lamports = to_base_units(amount_sol, 9)
        if lamports <= 0:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "amountSol converts to an invalid lamport value")

        source = await self._resolve_source(from_user_id, from_address)
        if not source.ok:
            return ServiceResult.from_error(source.error)
        source_user, source_address = source.value
        to_address = to_address.strip()

        existing = await get_transfer_by_batch(batch_id, self.db)
        if existing is not None and existing.state in (TransactionState.SUBMITTED, TransactionState.CONFIRMED):
            logger.info(f"Transfer {batch_id} already {existing.state.value}; returning stored record")
            return ServiceResult.success(existing)

        built = await self._build(source_address, to_address, lamports, memo)
        if not built.ok:
            return ServiceResult.from_error(built.error)
        unsigned = built.value

        if existing is None:
            meta = TransferMeta(admin_user_id=str(admin.id), request_id=request_id, prepared_at=utc_now_iso())
            transfer = InternalTransfer(
                batch_id=batch_id,
                admin_user_id=admin.id,
                source_user_id=source_user.id if source_user else None,
                source_address=source_address,
                destination_address=to_address,
                lamports=lamports,
                memo=memo or None,
                state=TransactionState.PREPARED,
                meta=dump_meta(self._apply_unsigned(meta, unsigned)),
            )
            self.db.add(transfer)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                await reload_session_objects(self.db)
                logger.info(f"Concurrent prepare for transfer {batch_id}; using stored record")
                return ServiceResult.success(await get_transfer_by_batch(batch_id, self.db))
            await self.db.refresh(transfer)
        else:
            # A PREPARED or FAILED transfer is superseded by a fresh payload
            meta = self._apply_unsigned(transfer_meta(existing), unsigned)
            meta.admin_user_id = str(admin.id)
            meta.request_id = request_id
            meta.prepared_at = utc_now_iso()
            meta.failure_reason = None
            transfer = await save_transfer(
                existing,
                dump_meta(meta),
                self.db,
                admin_user_id=admin.id,
                source_user_id=source_user.id if source_user else None,
                source_address=source_address,
                destination_address=to_address,
                lamports=lamports,
                memo=memo or None,
                state=TransactionState.PREPARED,
                signature=None,
            )

        logger.info(
            f"Prepared internal transfer {batch_id}: {source_address} -> {to_address} "
            f"{lamports} lamports (admin {admin.id})"
        )
        return ServiceResult.success(transfer)

    async def _refresh(self, transfer: InternalTransfer, expected: TransactionState) -> ServiceResult[InternalTransfer]:
        built = await self._build(transfer.source_address, transfer.destination_address, int(transfer.lamports), transfer.memo)
        meta = transfer_meta(transfer)
        if not built.ok:
            meta.failure_reason = f"Refresh failed: {built.error.message}"
            await save_transfer(transfer, dump_meta(meta), self.db)
            return ServiceResult.from_error(built.error)

        meta = self._apply_unsigned(meta, built.value)
        meta.refresh_count += 1
        meta.last_refresh_reason = "BLOCKHASH_EXPIRED"
        meta.refreshed_at = utc_now_iso()
        moved = await transition_transfer(
            transfer.id, expected, TransactionState.PREPARED, self.db, signature=None, meta=dump_meta(meta)
        )
        await self.db.commit()
        if moved:
            logger.info(f"Refreshed transfer {transfer.batch_id}; refreshCount={meta.refresh_count}")
        else:
            logger.info(f"Transfer {transfer.batch_id} left {expected.value} before refresh could apply")
        return ServiceResult.success(await get_transfer_by_batch(transfer.batch_id, self.db))

    async def _fail(self, transfer: InternalTransfer, expected: TransactionState, reason: str) -> None:
        meta = transfer_meta(transfer)
        meta.failure_reason = reason
        meta.failure_at = utc_now_iso()
        moved = await transition_transfer(transfer.id, expected, TransactionState.FAILED, self.db, meta=dump_meta(meta))
        await self.db.commit()
        if not moved:
            logger.info(f"Transfer {transfer.batch_id} left {expected.value}; failure not recorded")
            return
        logger.error(f"Internal transfer {transfer.batch_id} FAILED: {reason}")

    async def submit(self, admin: User, batch_id: str, signed_transaction: str) -> ServiceResult[SubmittedTransfer]:
        transfer = await get_transfer_by_batch(batch_id, self.db)
        if transfer is None:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Internal transfer not found; prepare it first")

        if transfer.state == TransactionState.CONFIRMED:
            return ServiceResult.success(
                SubmittedTransfer(transfer, transfer.signature, explorer_url(transfer.signature, self.settings.is_devnet))
            )
        if transfer.state == TransactionState.FAILED:
            return ServiceResult.failure(ErrorCode.VALIDATION_ERROR, "Transfer has failed; prepare it again")

        decoded = decode_signed_transaction(signed_transaction)
        if not decoded.ok:
            return ServiceResult.from_error(decoded.error)
        tx = decoded.value
        if fee_payer(tx) != transfer.source_address:
            return ServiceResult.failure(
                ErrorCode.VALIDATION_ERROR, "Signed transaction fee payer does not match the transfer source"
            )

        meta = transfer_meta(transfer)
        if transfer.state == TransactionState.PREPARED:
            if recent_blockhash(tx) != meta.recent_blockhash:
                return ServiceResult.failure(
                    ErrorCode.VALIDATION_ERROR,
                    "Signed transaction does not match the prepared transfer; sign the latest payload",
                )
            meta.submitted_at = utc_now_iso()
            meta.submitted_signature = str(tx.signatures[0])
            if not await transition_transfer(
                transfer.id, TransactionState.PREPARED, TransactionState.SUBMITTED, self.db, meta=dump_meta(meta)
            ):
                await self.db.commit()
                return ServiceResult.failure(
                    ErrorCode.NETWORK_ERROR, "Transfer is already being submitted", retryable=True
                )
            await self.db.commit()
            transfer = await get_transfer_by_batch(batch_id, self.db)
            outcome = await self.submitter.submit_and_confirm(tx, meta.last_valid_block_height)
        else:
            signature = meta.submitted_signature or str(tx.signatures[0])
            outcome = await self.submitter.wait_for_confirmation(signature, meta.last_valid_block_height)

        return await self._settle(transfer, outcome)

    async def _settle(self, transfer: InternalTransfer, outcome: SubmissionOutcome) -> ServiceResult[SubmittedTransfer]:
        batch_id = transfer.batch_id
        if outcome.confirmed:
            meta = transfer_meta(transfer)
            meta.failure_reason = None
            await transition_transfer(
                transfer.id,
                TransactionState.SUBMITTED,
                TransactionState.CONFIRMED,
                self.db,
                signature=outcome.signature,
                meta=dump_meta(meta),
            )
            await self.db.commit()
            logger.info(f"Internal transfer {batch_id} confirmed: {outcome.signature}")
            stored = await get_transfer_by_batch(batch_id, self.db)
            return ServiceResult.success(
                SubmittedTransfer(stored, outcome.signature, explorer_url(outcome.signature, self.settings.is_devnet))
            )

        if outcome.failure == FailureKind.EXPIRED:
            refreshed = await self._refresh(transfer, TransactionState.SUBMITTED)
            if not refreshed.ok:
                return ServiceResult.from_error(refreshed.error)
            payload = transfer_payload(refreshed.value)
            return ServiceResult.failure(
                ErrorCode.BLOCKHASH_EXPIRED,
                "Transaction blockhash expired before submission. A refreshed payload is ready to sign.",
                retryable=True,
                payload={"batchId": batch_id, "refreshCount": payload["refreshCount"], "transfer": payload},
            )

        if outcome.failure == FailureKind.UNCONFIRMED:
            meta = transfer_meta(transfer)
            meta.failure_reason = outcome.reason
            await save_transfer(transfer, dump_meta(meta), self.db)
            return ServiceResult.failure(
                ErrorCode.NETWORK_ERROR,
                "Transfer submitted but not confirmed yet; retry to check its status",
                retryable=True,
                payload={"batchId": batch_id, "signature": outcome.signature},
            )

        await self._fail(transfer, TransactionState.SUBMITTED, outcome.reason or "Rejected by the network")
        return ServiceResult.failure(
            ErrorCode.INTERNAL_ERROR, "Transfer was rejected by the network", payload={"batchId": batch_id}
        )
