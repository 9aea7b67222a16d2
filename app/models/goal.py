# app/models/goal.py
import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship
from app.core.database import Base

class GoalStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"

class GoalFrequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

class Goal(Base):
    __tablename__ = "goals"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    asset_symbol = Column(String(16), nullable=False)
    target_amount = Column(Float, nullable=False)
    # Only ever moved by confirmed SWAP records (see app/utils/goal_state.py)
    invested_amount = Column(Float, nullable=False, default=0.0)
    amount_per_interval = Column(Float, nullable=False)
    frequency = Column(SAEnum(GoalFrequency, name="goal_frequency"), nullable=False)
    status = Column(SAEnum(GoalStatus, name="goal_status"), nullable=False, default=GoalStatus.ACTIVE)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="goals", lazy="joined")
    transactions = relationship(
        "TransactionRecord",
        back_populates="goal",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Goal {self.asset_symbol} {self.invested_amount}/{self.target_amount} status={self.status}>"
