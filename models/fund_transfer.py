# models/fund_transfer.py
"""
Member-to-member balance transfers.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint

from models.base import Base, AuditMixin, Money


class FundTransfer(Base, AuditMixin):
    __tablename__ = 'fund_transfers'
    __table_args__ = (
        CheckConstraint('"senderID" <> "recipientID"', name='ck_transfer_distinct_members'),
        CheckConstraint('amount > 0', name='ck_transfer_positive'),
    )

    transferID = Column(Integer, primary_key=True, autoincrement=True)
    senderID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    recipientID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    note = Column(String, nullable=True)

    def __repr__(self):
        return (
            f"<FundTransfer(id={self.transferID}, {self.senderID} -> {self.recipientID}, "
            f"amount={self.amount})>"
        )
