# app/schemas/metadata.py
"""
Typed shapes for the JSON `meta` column of transaction and transfer records.

Each record kind has its own model; `parse_meta` picks the right one from the
`kind` tag. Keys the current code does not know about are preserved in
`extra` so older or newer writers do not lose data.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

from pydantic import Field, TypeAdapter, model_validator
from typing_extensions import Annotated

from app.schemas.base import CamelModel


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


class RecordMeta(CamelModel):
    failure_reason: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_unknown_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = set()
        for name, field in cls.model_fields.items():
            known.add(name)
            if field.alias:
                known.add(field.alias)
        cleaned: Dict[str, Any] = {}
        extra = dict(data.get("extra") or {})
        for key, value in data.items():
            if key == "extra":
                continue
            if key in known:
                cleaned[key] = value
            else:
                extra[key] = value
        cleaned["extra"] = extra
        return cleaned


class DepositSimulationMeta(RecordMeta):
    kind: Literal["DEPOSIT_SIMULATION"] = "DEPOSIT_SIMULATION"
    simulated: bool = True
    wallet_address: Optional[str] = None
    sol_validated: bool = False


class AnchoredMeta(RecordMeta):
    """Fields shared by every record that hands an unsigned transaction to a signer."""
    unsigned_transaction: Optional[str] = None
    recent_blockhash: Optional[str] = None
    last_valid_block_height: Optional[int] = None
    fee_estimate_lamports: Optional[int] = None
    refresh_count: int = 0
    last_refresh_reason: Optional[str] = None
    prepared_at: Optional[str] = None
    submitted_at: Optional[str] = None
    # Signature of the last submitted payload; tx_hash is only set once confirmed
    submitted_signature: Optional[str] = None
    refreshed_at: Optional[str] = None


class SwapMeta(AnchoredMeta):
    kind: Literal["SWAP", "INTERMEDIATE_SWAP"] = "SWAP"
    quote_id: Optional[str] = None
    quote: Dict[str, Any] = Field(default_factory=dict)
    input_mint: Optional[str] = None
    output_mint: Optional[str] = None
    in_amount: Optional[int] = None
    slippage_bps: int = 50
    escalation_count: int = 0
    wallet_address: Optional[str] = None
    received_base_units: Optional[int] = None
    amount_source: Optional[str] = None
    confirmed_at: Optional[str] = None


class TransferMeta(AnchoredMeta):
    kind: Literal["INTERNAL_TRANSFER"] = "INTERNAL_TRANSFER"
    admin_user_id: Optional[str] = None
    request_id: Optional[str] = None
    failure_at: Optional[str] = None


AnyRecordMeta = Annotated[
    Union[DepositSimulationMeta, SwapMeta, TransferMeta],
    Field(discriminator="kind"),
]

_meta_adapter = TypeAdapter(AnyRecordMeta)


def parse_meta(raw: Optional[Dict[str, Any]], default_kind: Optional[str] = None):
    data = dict(raw or {})
    if "kind" not in data and default_kind:
        data["kind"] = default_kind
    return _meta_adapter.validate_python(data)


def dump_meta(meta: RecordMeta) -> Dict[str, Any]:
    return meta.model_dump(by_alias=True, mode="json")
