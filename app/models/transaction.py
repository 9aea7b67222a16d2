# app/models/transaction.py
import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, ForeignKey, Float, DateTime, JSON, UniqueConstraint, Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship
from app.core.database import Base

class TransactionKind(str, enum.Enum):
    DEPOSIT_SIMULATION = "DEPOSIT_SIMULATION"
    INTERMEDIATE_SWAP = "INTERMEDIATE_SWAP"
    SWAP = "SWAP"

class TransactionState(str, enum.Enum):
    PREPARED = "PREPARED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

class TransactionRecord(Base):
    """One row per on-chain step of a batch; (batch_id, kind) is unique."""
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("batch_id", "kind", name="uq_transactions_batch_kind"),
    )

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    goal_id = Column(PG_UUID(as_uuid=True), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id = Column(String(64), nullable=False, index=True)
    kind = Column(SAEnum(TransactionKind, name="transaction_kind"), nullable=False)
    state = Column(SAEnum(TransactionState, name="transaction_state"), nullable=False, default=TransactionState.PREPARED)
    provider = Column(String(32), nullable=False)
    network = Column(String(16), nullable=False)
    # Set only once the network confirmed the step
    tx_hash = Column(String(128), nullable=True)
    amount_usd = Column(Float, nullable=True)
    amount_asset = Column(Float, nullable=True)
    asset_mint = Column(String(64), nullable=True)
    meta = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    goal = relationship("Goal", back_populates="transactions")

    def __repr__(self):
        return f"<TransactionRecord {self.kind} batch={self.batch_id} state={self.state}>"
