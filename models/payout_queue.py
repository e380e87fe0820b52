# models/payout_queue.py
"""
Durable queue of computed but not yet applied balance credits.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from models.base import Base, Money, _get_current_time


class PayoutStatus(Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    APPLIED = "applied"
    FAILED = "failed"


class PayoutQueueItem(Base):
    """Payout queue item."""
    __tablename__ = 'payout_queue'

    id = Column(Integer, primary_key=True, autoincrement=True)
    beneficiaryID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    # Credited to lockedBalance instead of availableBalance
    locked = Column(Boolean, default=False, nullable=False)

    incomeEntryID = Column(Integer, ForeignKey('income_entries.entryID'), nullable=True, unique=True)
    cycleID = Column(Integer, ForeignKey('global_cycles.cycleID'), nullable=True, index=True)

    status = Column(String(20), default=PayoutStatus.QUEUED.value, nullable=False, index=True)
    createdAt = Column(DateTime, default=_get_current_time, nullable=False, index=True)
    startedAt = Column(DateTime, nullable=True)
    appliedAt = Column(DateTime, nullable=True)
    nextAttemptAt = Column(DateTime, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    lastError = Column(String, nullable=True)

    def __repr__(self):
        return f"<PayoutQueueItem(id={self.id}, beneficiary={self.beneficiaryID}, status={self.status})>"
