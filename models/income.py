# models/income.py
"""
Income entries created by the income distribution engine.
Append-only: the only change after insert is status pending -> completed.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, ForeignKey

from models.base import Base, AuditMixin, Money


class IncomeKind(Enum):
    REFERRAL = "referral"
    LEVEL = "level"
    GLOBAL = "global"
    RE_TOPUP = "re_topup"


class IncomeStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class IncomeEntry(Base, AuditMixin):
    __tablename__ = 'income_entries'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    beneficiaryID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    # Activating member; empty for global cycle payouts
    sourceMemberID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)

    kind = Column(String(20), nullable=False, index=True)
    level = Column(Integer, nullable=True)
    amount = Column(Money, nullable=False)

    sourceTransactionID = Column(
        Integer, ForeignKey('activation_transactions.transactionID'), nullable=True, index=True
    )
    cycleID = Column(Integer, ForeignKey('global_cycles.cycleID'), nullable=True, index=True)

    status = Column(String(20), nullable=False, default=IncomeStatus.PENDING.value)

    # Deterministic per source and slot; makes re-running a distribution a no-op
    distributionKey = Column(String, nullable=False, unique=True)

    def __repr__(self):
        return (
            f"<IncomeEntry(id={self.entryID}, kind={self.kind}, level={self.level}, "
            f"beneficiary={self.beneficiaryID}, amount={self.amount})>"
        )
