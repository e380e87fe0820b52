# mlm_engine/services/global_cycle_service.py
"""
Global cycle service - binary matrix placement and cycle settlement.

Each rank tier fills one cycle at a time. Positions come from an atomic
counter on the cycle row; when the counter reaches capacity the cycle's pool
is split equally across its payout levels and paid to the position holders.
"""
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func, select
import logging

from config import ConfigurationError
from core.retry import ConflictError
from models.base import utcnow
from models.member import Member
from models.global_cycle import GlobalCycle, CyclePosition, CycleStatus
from models.income import IncomeEntry, IncomeKind, IncomeStatus
from models.platform_ledger import PlatformLedgerEntry, PlatformLedgerKind
from mlm_engine.config.plan import (
    cycle_size,
    reenroll_on_completion,
    max_cycles_per_run,
    global_income_locked,
)
from mlm_engine.events.event_bus import MLMEvents
from mlm_engine.services.payout_service import PayoutService
from mlm_engine.utils.matrix import depth_for_capacity, payout_level
from mlm_engine.utils.money import ZERO, split_evenly

logger = logging.getLogger(__name__)


class GlobalCycleService:
    """Service for global matrix enrollment and cycle completion."""

    def __init__(self, session: Session):
        self.session = session
        self.payoutService = PayoutService(session)
        # (eventName, data) pairs, emitted by the caller after commit
        self.events: List[Tuple[str, Dict]] = []

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    async def enroll(
            self,
            memberId: int,
            rankKey: str,
            poolAmount: Decimal,
            sourceTransactionId: Optional[int] = None
    ) -> Dict:
        """
        Place a member in the tier's open cycle and fund its pool.

        Runs inside the caller's transaction. A member who already holds an
        open position for the tier keeps it; the reserve still funds that
        cycle.

        Returns:
            {"cycleId", "position", "newPosition", "completedCycles"}
        """
        existing = self.session.query(CyclePosition).filter_by(
            openKey=CyclePosition.open_key_for(memberId, rankKey)
        ).first()

        if existing:
            self._fundCycle(existing.cycleID, poolAmount)
            logger.info(
                f"Member {memberId} already holds position {existing.position} "
                f"in cycle {existing.cycleID}, pool +{poolAmount}"
            )
            return {
                "cycleId": existing.cycleID,
                "position": existing.position,
                "newPosition": False,
                "completedCycles": []
            }

        first = None
        completedCycles = []
        queue = [(memberId, poolAmount, sourceTransactionId, False)]

        while queue:
            entrantId, contribution, txId, isReentry = queue.pop(0)
            placement, completed = await self._place(entrantId, rankKey, contribution, txId, isReentry)

            if first is None:
                first = placement

            if completed is None:
                continue

            completedCycles.append(completed.cycleID)

            if reenroll_on_completion() and len(completedCycles) < max_cycles_per_run():
                baseHolder = self.session.query(CyclePosition.memberID).filter_by(
                    cycleID=completed.cycleID, position=1
                ).scalar()
                queue.append((baseHolder, ZERO, None, True))
                logger.info(f"Re-enrolling member {baseHolder} after cycle {completed.cycleID}")

        return {
            "cycleId": first.cycleID,
            "position": first.position,
            "newPosition": True,
            "completedCycles": completedCycles
        }

    def getOpenCycle(self, rankKey: str) -> Optional[GlobalCycle]:
        return self.session.query(GlobalCycle).filter(
            GlobalCycle.rankKey == rankKey,
            GlobalCycle.status.in_([CycleStatus.OPEN.value, CycleStatus.FILLING.value])
        ).order_by(GlobalCycle.generation.asc()).first()

    def getCycleStatus(self, cycleId: int) -> Optional[Dict]:
        cycle = self.session.get(GlobalCycle, cycleId)
        if not cycle:
            return None

        paid = self.session.query(
            func.coalesce(func.sum(IncomeEntry.amount), 0)
        ).filter(
            IncomeEntry.cycleID == cycleId,
            IncomeEntry.kind == IncomeKind.GLOBAL.value
        ).scalar()

        return {
            "cycleId": cycle.cycleID,
            "rankKey": cycle.rankKey,
            "generation": cycle.generation,
            "capacity": cycle.capacity,
            "levels": cycle.levels,
            "filledCount": cycle.filledCount,
            "poolAmount": cycle.poolAmount,
            "status": cycle.status,
            "paidOut": Decimal(str(paid)).quantize(Decimal("0.01")),
        }

    # ============================================================
    # INTERNAL
    # ============================================================

    async def _place(
            self,
            memberId: int,
            rankKey: str,
            contribution: Decimal,
            sourceTransactionId: Optional[int],
            isReentry: bool
    ) -> Tuple[CyclePosition, Optional[GlobalCycle]]:
        """Assign the next position; returns (position, completed cycle or None)."""
        cycle = self._getOrCreateOpenCycle(rankKey)
        table = GlobalCycle.__table__

        # Atomic counter: the increment itself decides the position
        result = self.session.execute(
            table.update()
            .where(table.c.cycleID == cycle.cycleID)
            .where(table.c.filledCount < table.c.capacity)
            .values(
                filledCount=table.c.filledCount + 1,
                poolAmount=table.c.poolAmount + contribution,
                status=CycleStatus.FILLING.value
            )
        )
        if result.rowcount != 1:
            raise ConflictError(f"Cycle {cycle.cycleID} filled concurrently")

        position = self.session.execute(
            select(table.c.filledCount).where(table.c.cycleID == cycle.cycleID)
        ).scalar()

        placement = CyclePosition(
            cycleID=cycle.cycleID,
            position=position,
            memberID=memberId,
            poolContribution=contribution,
            sourceTransactionID=sourceTransactionId,
            isReentry=isReentry,
            openKey=CyclePosition.open_key_for(memberId, rankKey)
        )
        self.session.add(placement)
        self.session.flush()

        self.session.execute(
            Member.__table__.update()
            .where(Member.__table__.c.memberID == memberId)
            .values(matrixPosition=position, matrixCycleID=cycle.cycleID)
        )

        logger.info(
            f"Member {memberId} placed at position {position}/{cycle.capacity} "
            f"in cycle {cycle.cycleID} ({rankKey} gen {cycle.generation})"
        )

        self.session.refresh(cycle)
        if position < cycle.capacity:
            return placement, None

        await self._completeCycle(cycle)
        return placement, cycle

    def _getOrCreateOpenCycle(self, rankKey: str) -> GlobalCycle:
        cycle = self.session.query(GlobalCycle).filter(
            GlobalCycle.rankKey == rankKey,
            GlobalCycle.status.in_([CycleStatus.OPEN.value, CycleStatus.FILLING.value])
        ).order_by(GlobalCycle.generation.asc()).with_for_update().first()

        if cycle:
            return cycle

        capacity = cycle_size()
        try:
            levels = depth_for_capacity(capacity)
        except ValueError as e:
            raise ConfigurationError(str(e))

        lastGeneration = self.session.query(
            func.max(GlobalCycle.generation)
        ).filter(GlobalCycle.rankKey == rankKey).scalar() or 0

        cycle = GlobalCycle(
            rankKey=rankKey,
            generation=lastGeneration + 1,
            capacity=capacity,
            levels=levels,
            filledCount=0,
            poolAmount=ZERO,
            status=CycleStatus.OPEN.value
        )
        self.session.add(cycle)
        # A concurrent opener surfaces as IntegrityError on (rankKey, generation)
        self.session.flush()

        logger.info(f"Opened cycle {cycle.cycleID}: {rankKey} gen {cycle.generation}, capacity {capacity}")
        return cycle

    def _fundCycle(self, cycleId: int, amount: Decimal) -> None:
        if amount <= 0:
            return
        table = GlobalCycle.__table__
        self.session.execute(
            table.update()
            .where(table.c.cycleID == cycleId)
            .values(poolAmount=table.c.poolAmount + amount)
        )

    async def _completeCycle(self, cycle: GlobalCycle) -> None:
        """
        Settle a full cycle.

        perLevel = pool / levels; each level's share is split evenly among
        its holders. Every remainder cent goes to the platform ledger.
        """
        positions = self.session.query(CyclePosition).filter_by(
            cycleID=cycle.cycleID
        ).order_by(CyclePosition.position.asc()).all()

        cycle.status = CycleStatus.COMPLETE.value
        cycle.completedAt = utcnow()

        perLevel, retained = split_evenly(cycle.poolAmount, cycle.levels)
        unallocated = ZERO

        holdersByLevel = defaultdict(list)
        for holder in positions:
            holdersByLevel[payout_level(holder.position, cycle.levels)].append(holder)

        payouts = 0
        for level in range(1, cycle.levels + 1):
            holders = holdersByLevel.get(level)
            if not holders:
                unallocated += perLevel
                continue

            share, remainder = split_evenly(perLevel, len(holders))
            retained += remainder

            for holder in holders:
                if share > 0:
                    await self._payHolder(cycle, holder, level, share)
                    payouts += 1
                holder.openKey = None

        if retained > 0:
            self._retain(cycle, PlatformLedgerKind.ROUNDING_REMAINDER, retained)
        if unallocated > 0:
            self._retain(cycle, PlatformLedgerKind.UNALLOCATED_GLOBAL, unallocated)

        self.session.flush()

        self.events.append((MLMEvents.CYCLE_COMPLETED, {
            "cycleId": cycle.cycleID,
            "rankKey": cycle.rankKey,
            "generation": cycle.generation,
            "capacity": cycle.capacity,
            "poolAmount": cycle.poolAmount,
            "perLevel": perLevel,
            "payouts": payouts,
            "retained": retained + unallocated,
        }))

        logger.info(
            f"Cycle {cycle.cycleID} complete: pool {cycle.poolAmount}, "
            f"{cycle.levels} levels x {perLevel}, {payouts} payouts queued"
        )

    async def _payHolder(self, cycle: GlobalCycle, holder: CyclePosition, level: int, share: Decimal) -> None:
        entry = IncomeEntry(
            beneficiaryID=holder.memberID,
            sourceMemberID=None,
            kind=IncomeKind.GLOBAL.value,
            level=level,
            amount=share,
            cycleID=cycle.cycleID,
            status=IncomeStatus.PENDING.value,
            distributionKey=f"cycle:{cycle.cycleID}:position:{holder.position}"
        )
        self.session.add(entry)
        self.session.flush()

        await self.payoutService.enqueue(
            holder.memberID,
            share,
            incomeEntryId=entry.entryID,
            cycleId=cycle.cycleID,
            locked=global_income_locked()
        )

        self.events.append((MLMEvents.INCOME_CREATED, {
            "entryId": entry.entryID,
            "kind": entry.kind,
            "level": level,
            "beneficiaryId": holder.memberID,
            "amount": share,
            "cycleId": cycle.cycleID,
        }))

    def _retain(self, cycle: GlobalCycle, kind: PlatformLedgerKind, amount: Decimal) -> None:
        self.session.add(PlatformLedgerEntry(
            kind=kind.value,
            amount=amount,
            cycleID=cycle.cycleID,
            note=f"cycle {cycle.cycleID} settlement"
        ))
