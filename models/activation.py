# models/activation.py
"""
Activation / top-up transactions.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, Money


class ActivationStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ActivationType(Enum):
    ACTIVATION = "activation"   # Inactive -> first tier
    UPGRADE = "upgrade"         # next tier
    RETOPUP = "retopup"         # same tier again


class ActivationTransaction(Base, AuditMixin):
    __tablename__ = 'activation_transactions'

    transactionID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    targetRank = Column(String, nullable=False)
    previousRank = Column(String, nullable=False)
    txType = Column(String(20), nullable=False)

    paymentMethod = Column(String(30), nullable=False)
    # Transaction hash or P2P reference, unique across all transactions
    paymentProof = Column(String, nullable=True, unique=True)
    fromWallet = Column(String, nullable=True)

    amount = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default=ActivationStatus.PENDING.value, index=True)

    # Set while the transaction is non-terminal; unique, so one per member
    pendingKey = Column(String, nullable=True, unique=True)

    incomeDistributed = Column(Boolean, nullable=False, default=False)
    rejectionReason = Column(String, nullable=True)
    processedBy = Column(Integer, nullable=True)
    completedAt = Column(DateTime, nullable=True)

    member = relationship('Member', backref='activations')

    @staticmethod
    def pending_key_for(memberId: int) -> str:
        return f"pending:{memberId}"

    def __repr__(self):
        return (
            f"<ActivationTransaction(id={self.transactionID}, member={self.memberID}, "
            f"rank={self.targetRank}, status={self.status})>"
        )
