# models/global_cycle.py
"""
Global matrix cycles and the positions inside them.
"""
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint, CheckConstraint
)
from models.base import Base, AuditMixin, Money


class CycleStatus(Enum):
    OPEN = "open"
    FILLING = "filling"
    COMPLETE = "complete"


class GlobalCycle(Base, AuditMixin):
    __tablename__ = 'global_cycles'
    __table_args__ = (
        UniqueConstraint('rankKey', 'generation', name='uq_cycle_rank_generation'),
        CheckConstraint('"filledCount" <= capacity', name='ck_cycle_not_overfilled'),
    )

    cycleID = Column(Integer, primary_key=True, autoincrement=True)
    rankKey = Column(String, nullable=False, index=True)
    generation = Column(Integer, nullable=False)

    # Frozen at creation
    capacity = Column(Integer, nullable=False)
    levels = Column(Integer, nullable=False)

    filledCount = Column(Integer, nullable=False, default=0)
    poolAmount = Column(Money, nullable=False, default=Decimal("0.00"))
    status = Column(String(20), nullable=False, default=CycleStatus.OPEN.value, index=True)
    completedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<GlobalCycle(id={self.cycleID}, rank={self.rankKey}, gen={self.generation}, "
            f"filled={self.filledCount}/{self.capacity}, status={self.status})>"
        )


class CyclePosition(Base, AuditMixin):
    __tablename__ = 'cycle_positions'
    __table_args__ = (
        UniqueConstraint('cycleID', 'position', name='uq_cycle_position'),
    )

    positionID = Column(Integer, primary_key=True, autoincrement=True)
    cycleID = Column(Integer, ForeignKey('global_cycles.cycleID'), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    poolContribution = Column(Money, nullable=False, default=Decimal("0.00"))
    sourceTransactionID = Column(Integer, nullable=True)
    isReentry = Column(Boolean, nullable=False, default=False)

    # "{memberID}:{rankKey}" while the cycle is open; cleared on completion
    openKey = Column(String, nullable=True, unique=True)

    @staticmethod
    def open_key_for(memberId: int, rankKey: str) -> str:
        return f"{memberId}:{rankKey}"

    def __repr__(self):
        return f"<CyclePosition(cycle={self.cycleID}, position={self.position}, member={self.memberID})>"
