# models/member.py
"""
Member model - identity, sponsor link, rank and balances.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, Money


class Member(Base, AuditMixin):
    __tablename__ = 'members'
    __table_args__ = (
        CheckConstraint('"availableBalance" >= 0', name='ck_member_available_nonnegative'),
        CheckConstraint('"pendingBalance" >= 0', name='ck_member_pending_nonnegative'),
        CheckConstraint('"lockedBalance" >= 0', name='ck_member_locked_nonnegative'),
        CheckConstraint('"totalEarnings" >= 0', name='ck_member_earnings_nonnegative'),
    )

    memberID = Column(Integer, primary_key=True, autoincrement=True)
    displayName = Column(String, nullable=True)

    # Upward link only; a sponsor always exists before its referrals
    sponsorID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)

    rank = Column(String, nullable=False, default='inactive')
    activatedAt = Column(DateTime, nullable=True)

    # Balances
    availableBalance = Column(Money, nullable=False, default=Decimal("0.00"))
    pendingBalance = Column(Money, nullable=False, default=Decimal("0.00"))
    # Global income held back until the member has enough direct referrals
    lockedBalance = Column(Money, nullable=False, default=Decimal("0.00"))
    totalEarnings = Column(Money, nullable=False, default=Decimal("0.00"))
    totalWithdrawn = Column(Money, nullable=False, default=Decimal("0.00"))
    lastClaimedAt = Column(DateTime, nullable=True)

    # Team
    directReferrals = Column(Integer, nullable=False, default=0)
    teamSize = Column(Integer, nullable=False, default=0)

    # Latest global matrix placement
    matrixPosition = Column(Integer, nullable=True)
    matrixCycleID = Column(Integer, nullable=True)

    sponsor = relationship('Member', remote_side=[memberID], backref='referrals')

    @property
    def isActive(self) -> bool:
        return self.rank != 'inactive'

    def __repr__(self):
        return f"<Member(memberID={self.memberID}, rank={self.rank}, available={self.availableBalance})>"
