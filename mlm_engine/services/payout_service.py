# mlm_engine/services/payout_service.py
"""
Payout queue service - durable staging of balance credits.

Processing order is FIFO by (createdAt, id). Every item is claimed and
applied inside one database transaction, guarded by a conditional status
update, so an item is credited at most once no matter how many workers or
admins drain the queue at the same time.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import select, update, or_, and_
import logging

from models.base import utcnow
from models.member import Member
from models.income import IncomeEntry, IncomeStatus
from models.payout_queue import PayoutQueueItem, PayoutStatus
from mlm_engine.config.plan import payout_batch_size, payout_max_attempts
from mlm_engine.errors import PayoutItemNotFound
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import ZERO

logger = logging.getLogger(__name__)

APPLIED = "applied"
FAILED = "failed"
SKIPPED = "skipped"


class PayoutService:
    """Service for queueing and applying payouts."""

    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    async def enqueue(
            self,
            beneficiaryId: int,
            amount: Decimal,
            incomeEntryId: Optional[int] = None,
            cycleId: Optional[int] = None,
            locked: bool = False
    ) -> PayoutQueueItem:
        """
        Append a queued item. Runs inside the caller's transaction.

        A locked item credits lockedBalance; the member moves it to
        availableBalance later through a claim.
        """
        item = PayoutQueueItem(
            beneficiaryID=beneficiaryId,
            amount=amount,
            locked=locked,
            incomeEntryID=incomeEntryId,
            cycleID=cycleId,
            status=PayoutStatus.QUEUED.value,
            attempts=0
        )
        self.session.add(item)
        self.session.flush()

        logger.debug(
            f"Payout queued: item={item.id}, member={beneficiaryId}, amount={amount}, locked={locked}"
        )
        return item

    async def processQueue(self, batchSize: Optional[int] = None) -> Dict:
        """
        Apply the next batch of queued (and retry-ready failed) items.

        Args:
            batchSize: Max items to process (default PAYOUT_BATCH_SIZE)

        Returns:
            {"applied", "failed", "skipped", "totalAmount"}
        """
        if batchSize is None:
            batchSize = payout_batch_size()

        itemIds = self._selectBatch(batchSize)

        summary = {
            "applied": 0,
            "failed": 0,
            "skipped": 0,
            "totalAmount": ZERO
        }

        for itemId in itemIds:
            outcome, amount = await self._applyOne(itemId)
            summary[outcome] += 1
            if outcome == APPLIED:
                summary["totalAmount"] += amount

        if itemIds:
            logger.info(
                f"Payout queue batch: {summary['applied']} applied, "
                f"{summary['failed']} failed, {summary['skipped']} skipped, "
                f"total {summary['totalAmount']}"
            )

        return summary

    async def applyItem(self, itemId: int) -> str:
        """
        Apply a single item through the same guard as processQueue().

        Returns:
            "applied", "failed" or "skipped" (already applied or in flight)
        """
        exists = self.session.execute(
            select(PayoutQueueItem.__table__.c.id).where(PayoutQueueItem.__table__.c.id == itemId)
        ).first()
        self.session.commit()

        if exists is None:
            raise PayoutItemNotFound(f"Payout item {itemId} not found", {"itemId": itemId})

        outcome, _ = await self._applyOne(itemId)
        return outcome

    def getQueueStats(self) -> Dict[str, int]:
        stats = {status.value: 0 for status in PayoutStatus}
        for item in self.session.query(PayoutQueueItem.status).all():
            stats[item.status] = stats.get(item.status, 0) + 1
        return stats

    # ============================================================
    # INTERNAL
    # ============================================================

    def _selectBatch(self, batchSize: int) -> List[int]:
        """Pick retry-ready item ids in FIFO order."""
        now = utcnow()
        try:
            rows = self.session.execute(
                select(PayoutQueueItem.id)
                .where(or_(
                    PayoutQueueItem.status == PayoutStatus.QUEUED.value,
                    and_(
                        PayoutQueueItem.status == PayoutStatus.FAILED.value,
                        PayoutQueueItem.attempts < payout_max_attempts(),
                        or_(
                            PayoutQueueItem.nextAttemptAt.is_(None),
                            PayoutQueueItem.nextAttemptAt <= now
                        )
                    )
                ))
                .order_by(PayoutQueueItem.createdAt.asc(), PayoutQueueItem.id.asc())
                .limit(batchSize)
                .with_for_update(skip_locked=True)
            ).scalars().all()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        return list(rows)

    async def _applyOne(self, itemId: int):
        """
        Claim, credit and mark one item in a single transaction.

        Returns:
            (outcome, amount)
        """
        table = PayoutQueueItem.__table__
        now = utcnow()

        try:
            # 1. Idempotency guard: only queued/failed items can be claimed
            claimed = self.session.execute(
                table.update()
                .where(table.c.id == itemId)
                .where(table.c.status.in_([PayoutStatus.QUEUED.value, PayoutStatus.FAILED.value]))
                .values(status=PayoutStatus.PROCESSING.value, startedAt=now)
            )
            if claimed.rowcount == 0:
                self.session.rollback()
                logger.debug(f"Payout item {itemId} skipped (already applied or in flight)")
                return SKIPPED, ZERO

            row = self.session.execute(
                select(table.c.beneficiaryID, table.c.amount, table.c.locked, table.c.incomeEntryID)
                .where(table.c.id == itemId)
            ).one()

            # 2. Atomic increment, never read-modify-write
            mTable = Member.__table__
            if row.locked:
                # Counted as earnings when claimed
                values = dict(lockedBalance=mTable.c.lockedBalance + row.amount)
            else:
                values = dict(
                    availableBalance=mTable.c.availableBalance + row.amount,
                    totalEarnings=mTable.c.totalEarnings + row.amount
                )
            credited = self.session.execute(
                mTable.update()
                .where(mTable.c.memberID == row.beneficiaryID)
                .values(**values)
            )
            if credited.rowcount != 1:
                raise LookupError(f"Beneficiary {row.beneficiaryID} not found")

            # 3. Terminal status
            self.session.execute(
                table.update()
                .where(table.c.id == itemId)
                .values(status=PayoutStatus.APPLIED.value, appliedAt=now, lastError=None)
            )

            if row.incomeEntryID is not None:
                self.session.execute(
                    update(IncomeEntry.__table__)
                    .where(IncomeEntry.__table__.c.entryID == row.incomeEntryID)
                    .values(status=IncomeStatus.COMPLETED.value)
                )

            self.session.commit()

        except Exception as e:
            self.session.rollback()
            logger.error(f"Failed to apply payout item {itemId}: {e}")
            self._markFailed(itemId, e)
            return FAILED, ZERO

        # Objects loaded earlier in this session no longer match the rows
        self.session.expire_all()

        await eventBus.emit(MLMEvents.PAYOUT_APPLIED, {
            "itemId": itemId,
            "beneficiaryId": row.beneficiaryID,
            "amount": row.amount,
            "locked": row.locked,
            "incomeEntryId": row.incomeEntryID,
        })

        logger.info(f"Payout applied: item={itemId}, member={row.beneficiaryID}, amount={row.amount}")
        return APPLIED, row.amount

    def _markFailed(self, itemId: int, error: Exception) -> None:
        """Record a failed attempt and schedule the next one (2^attempts minutes)."""
        table = PayoutQueueItem.__table__
        try:
            attempts = self.session.execute(
                select(table.c.attempts).where(table.c.id == itemId)
            ).scalar() or 0
            attempts += 1

            self.session.execute(
                table.update()
                .where(table.c.id == itemId)
                .where(table.c.status != PayoutStatus.APPLIED.value)
                .values(
                    status=PayoutStatus.FAILED.value,
                    attempts=attempts,
                    lastError=str(error)[:500],
                    nextAttemptAt=utcnow() + timedelta(minutes=2 ** attempts)
                )
            )
            self.session.commit()

            if attempts >= payout_max_attempts():
                logger.error(f"Payout item {itemId} exhausted {attempts} attempts, needs manual review")

        except Exception as e:
            self.session.rollback()
            logger.error(f"Could not record failure for payout item {itemId}: {e}")
