# models/fund_request.py
"""
Wallet top-up requests, credited after an administrator approves them.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, Money


class FundRequestStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FundRequest(Base, AuditMixin):
    __tablename__ = 'fund_requests'

    requestID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    currency = Column(String(10), nullable=False, default="USDT")

    # Deposit hash or P2P reference; one request per payment
    paymentReference = Column(String, nullable=True, unique=True)

    # pending, approved, rejected
    status = Column(String(20), nullable=False, default=FundRequestStatus.PENDING.value, index=True)

    processedBy = Column(Integer, nullable=True)
    adminNotes = Column(String, nullable=True)
    processedAt = Column(DateTime, nullable=True)

    member = relationship('Member', backref='fundRequests')

    def __repr__(self):
        return (
            f"<FundRequest(id={self.requestID}, member={self.memberID}, "
            f"amount={self.amount}, status={self.status})>"
        )
