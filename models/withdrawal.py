# models/withdrawal.py
"""
Withdrawal requests.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, Money


class WithdrawalStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Withdrawal(Base, AuditMixin):
    __tablename__ = 'withdrawals'

    withdrawalID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    method = Column(String(30), nullable=False)
    deductionPercentage = Column(Money, nullable=False)
    deduction = Column(Money, nullable=False)
    netAmount = Column(Money, nullable=False)
    details = Column(JSON, nullable=True)

    # pending, completed, rejected, cancelled
    status = Column(String(20), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)

    processedBy = Column(Integer, nullable=True)
    adminNotes = Column(String, nullable=True)
    processedAt = Column(DateTime, nullable=True)

    member = relationship('Member', backref='withdrawals')

    def __repr__(self):
        return (
            f"<Withdrawal(id={self.withdrawalID}, member={self.memberID}, "
            f"amount={self.amount}, status={self.status})>"
        )
