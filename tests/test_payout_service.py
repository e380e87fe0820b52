# tests/test_payout_service.py
"""
Tests for the payout queue.

Run:
    pytest tests/test_payout_service.py -v
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from config import Config
from models import IncomeEntry, IncomeStatus, Member, PayoutQueueItem, PayoutStatus, utcnow
from mlm_engine.errors import PayoutItemNotFound
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.activation_service import ActivationService
from mlm_engine.services.payout_service import PayoutService


async def queue(session, member, amount):
    item = await PayoutService(session).enqueue(member.memberID, Decimal(amount))
    session.commit()
    return item


# =============================================================================
# TEST CLASS: Processing
# =============================================================================

class TestProcessQueue:

    async def test_applies_and_credits(self, session, make_member):
        member = make_member(rank="azurite")
        await queue(session, member, "2.50")
        await queue(session, member, "0.25")

        summary = await PayoutService(session).processQueue()

        assert summary == {"applied": 2, "failed": 0, "skipped": 0, "totalAmount": Decimal("2.75")}
        session.refresh(member)
        assert member.availableBalance == Decimal("2.75")
        assert member.totalEarnings == Decimal("2.75")

    async def test_fifo_batches(self, session, make_member):
        """
        TEST: items are applied oldest first, batchSize at a time.
        """
        members = [make_member(rank="azurite") for _ in range(3)]
        items = [await queue(session, m, "1.00") for m in members]

        await PayoutService(session).processQueue(batchSize=2)

        statuses = [session.get(PayoutQueueItem, i.id).status for i in items]
        assert statuses == [PayoutStatus.APPLIED.value, PayoutStatus.APPLIED.value, PayoutStatus.QUEUED.value]

    async def test_default_batch_size_from_config(self, session, make_member):
        Config.set(Config.PAYOUT_BATCH_SIZE, 1)
        member = make_member(rank="azurite")
        await queue(session, member, "1.00")
        await queue(session, member, "1.00")

        summary = await PayoutService(session).processQueue()

        assert summary["applied"] == 1

    async def test_empty_queue(self, session):
        summary = await PayoutService(session).processQueue()
        assert summary["applied"] == 0
        assert summary["totalAmount"] == Decimal("0.00")

    async def test_marks_income_entry_completed(self, session, make_member):
        sponsor = make_member(rank="azurite")
        member = make_member(sponsor=sponsor, balance="5")
        await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", {"convertFromBalance": "5"}
        )

        await PayoutService(session).processQueue()

        statuses = {e.status for e in session.query(IncomeEntry).all()}
        assert statuses == {IncomeStatus.COMPLETED.value}
        session.refresh(sponsor)
        assert sponsor.availableBalance == Decimal("2.75")

    async def test_payout_event(self, session, make_member):
        received = []
        eventBus.subscribe(MLMEvents.PAYOUT_APPLIED, received.append)
        member = make_member(rank="azurite")
        item = await queue(session, member, "3.00")

        await PayoutService(session).processQueue()

        assert [e["itemId"] for e in received] == [item.id]


# =============================================================================
# TEST CLASS: Idempotence
# =============================================================================

class TestIdempotence:

    async def test_item_applied_once(self, session, make_member):
        """
        TEST: applying the same item twice credits the balance exactly once.
        """
        member = make_member(rank="azurite")
        item = await queue(session, member, "5.00")
        service = PayoutService(session)

        first = await service.applyItem(item.id)
        second = await service.applyItem(item.id)

        assert (first, second) == ("applied", "skipped")
        session.refresh(member)
        assert member.availableBalance == Decimal("5.00")

    async def test_processed_item_not_reselected(self, session, make_member):
        member = make_member(rank="azurite")
        await queue(session, member, "5.00")

        await PayoutService(session).processQueue()
        summary = await PayoutService(session).processQueue()

        assert summary["applied"] == 0
        session.refresh(member)
        assert member.availableBalance == Decimal("5.00")

    async def test_unknown_item(self, session):
        with pytest.raises(PayoutItemNotFound):
            await PayoutService(session).applyItem(404)


# =============================================================================
# TEST CLASS: Failures
# =============================================================================

class TestFailures:

    async def test_failure_recorded_with_backoff(self, session, make_member):
        member = make_member(rank="azurite")
        item = await queue(session, member, "1.00")
        session.execute(Member.__table__.delete().where(Member.__table__.c.memberID == member.memberID))
        session.commit()

        summary = await PayoutService(session).processQueue()

        assert summary["failed"] == 1
        failed = session.get(PayoutQueueItem, item.id)
        session.refresh(failed)
        assert failed.status == PayoutStatus.FAILED.value
        assert failed.attempts == 1
        assert "not found" in failed.lastError
        assert failed.nextAttemptAt > utcnow() + timedelta(minutes=1)

    async def test_failed_item_waits_for_backoff(self, session, make_member):
        member = make_member(rank="azurite")
        item = await queue(session, member, "1.00")
        session.execute(Member.__table__.delete().where(Member.__table__.c.memberID == member.memberID))
        session.commit()
        await PayoutService(session).processQueue()

        summary = await PayoutService(session).processQueue()

        assert summary == {"applied": 0, "failed": 0, "skipped": 0, "totalAmount": Decimal("0.00")}
        assert session.get(PayoutQueueItem, item.id).attempts == 1

    async def test_retry_ready_item_applied(self, session, make_member):
        member = make_member(rank="azurite")
        item = await queue(session, member, "1.00")
        session.execute(
            PayoutQueueItem.__table__.update()
            .where(PayoutQueueItem.__table__.c.id == item.id)
            .values(status=PayoutStatus.FAILED.value, attempts=1, nextAttemptAt=utcnow() - timedelta(seconds=1))
        )
        session.commit()

        summary = await PayoutService(session).processQueue()

        assert summary["applied"] == 1
        session.refresh(member)
        assert member.availableBalance == Decimal("1.00")

    async def test_exhausted_item_left_for_review(self, session, make_member):
        member = make_member(rank="azurite")
        item = await queue(session, member, "1.00")
        session.execute(
            PayoutQueueItem.__table__.update()
            .where(PayoutQueueItem.__table__.c.id == item.id)
            .values(status=PayoutStatus.FAILED.value, attempts=3, nextAttemptAt=utcnow() - timedelta(hours=1))
        )
        session.commit()

        summary = await PayoutService(session).processQueue()

        assert summary["applied"] == 0


def test_queue_stats(session, make_member):
    member = make_member(rank="azurite")
    session.add(PayoutQueueItem(beneficiaryID=member.memberID, amount=Decimal("1.00"), status="queued"))
    session.add(PayoutQueueItem(beneficiaryID=member.memberID, amount=Decimal("1.00"), status="applied"))
    session.commit()

    stats = PayoutService(session).getQueueStats()

    assert stats["queued"] == 1
    assert stats["applied"] == 1
    assert stats["failed"] == 0
