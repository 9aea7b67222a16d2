# app/models/internal_transfer.py
import uuid
from datetime import datetime
from sqlalchemy import Column, String, ForeignKey, BigInteger, DateTime, JSON, Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from app.core.database import Base
from app.models.transaction import TransactionState

class InternalTransfer(Base):
    __tablename__ = "internal_transfers"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(String(64), nullable=False, unique=True)
    admin_user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    source_user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    source_address = Column(String(64), nullable=False)
    destination_address = Column(String(64), nullable=False)
    lamports = Column(BigInteger, nullable=False)
    memo = Column(String(255), nullable=True)
    signature = Column(String(128), nullable=True)
    state = Column(SAEnum(TransactionState, name="internal_transfer_state"), nullable=False, default=TransactionState.PREPARED, index=True)
    meta = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<InternalTransfer batch={self.batch_id} lamports={self.lamports} state={self.state}>"
