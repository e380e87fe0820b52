# models/platform_ledger.py
"""
Amounts retained by the platform: rounding remainders and shares with no
eligible beneficiary.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, ForeignKey

from models.base import Base, AuditMixin, Money


class PlatformLedgerKind(Enum):
    ROUNDING_REMAINDER = "rounding_remainder"
    UNALLOCATED_REFERRAL = "unallocated_referral"
    UNALLOCATED_LEVEL = "unallocated_level"
    UNALLOCATED_GLOBAL = "unallocated_global"


class PlatformLedgerEntry(Base, AuditMixin):
    __tablename__ = 'platform_ledger'

    entryID = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(30), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    sourceTransactionID = Column(
        Integer, ForeignKey('activation_transactions.transactionID'), nullable=True, index=True
    )
    cycleID = Column(Integer, ForeignKey('global_cycles.cycleID'), nullable=True, index=True)
    note = Column(String, nullable=True)

    def __repr__(self):
        return f"<PlatformLedgerEntry(kind={self.kind}, amount={self.amount})>"
