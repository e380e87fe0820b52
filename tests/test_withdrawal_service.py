# tests/test_withdrawal_service.py
"""
Tests for withdrawal requests, deductions and admin resolution.

Run:
    pytest tests/test_withdrawal_service.py -v
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from config import Config
from models import Withdrawal, WithdrawalStatus, utcnow
from mlm_engine.errors import (
    AboveMaximum,
    BelowMinimum,
    DailyLimitExceeded,
    DuplicatePendingWithdrawal,
    InsufficientBalance,
    InvalidPaymentDetails,
    InvalidStateTransition,
    InvalidWithdrawalMethod,
    ValidationError,
    WithdrawalNotFound,
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.withdrawal_service import WithdrawalService

WALLET = "0x" + "12" * 20


# =============================================================================
# TEST CLASS: Requests
# =============================================================================

class TestRequest:

    async def test_bank_withdrawal_deduction(self, session, make_member):
        """
        TEST: $100 via bank (15%) gives deduction $15.00, net $85.00 and
        moves the gross $100.00 out of available balance at request time.
        """
        member = make_member(balance="500")

        withdrawal = await WithdrawalService(session).requestWithdrawal(member.memberID, "100", "bank")

        assert withdrawal.deduction == Decimal("15.00")
        assert withdrawal.netAmount == Decimal("85.00")
        assert withdrawal.status == WithdrawalStatus.PENDING.value
        session.refresh(member)
        assert member.availableBalance == Decimal("400.00")
        assert member.pendingBalance == Decimal("100.00")

    @pytest.mark.parametrize("method,details,deduction", [
        ("usdt_bep20", {"walletAddress": WALLET}, Decimal("5.00")),
        ("fund_conversion", None, Decimal("10.00")),
        ("p2p", {"accountId": "alice@p2p", "platform": "binance"}, Decimal("0.00")),
    ])
    async def test_method_deductions(self, session, make_member, method, details, deduction):
        member = make_member(balance="500")

        withdrawal = await WithdrawalService(session).requestWithdrawal(member.memberID, "100", method, details)

        assert withdrawal.deduction == deduction
        assert withdrawal.netAmount == Decimal("100.00") - deduction

    async def test_wallet_normalized(self, session, make_member):
        member = make_member(balance="500")

        withdrawal = await WithdrawalService(session).requestWithdrawal(
            member.memberID, "50", "usdt_bep20", {"walletAddress": "0x" + "AB" * 20}
        )

        assert withdrawal.details == {"walletAddress": "0x" + "ab" * 20}

    async def test_missing_wallet(self, session, make_member):
        member = make_member(balance="500")

        with pytest.raises(InvalidPaymentDetails):
            await WithdrawalService(session).requestWithdrawal(member.memberID, "50", "usdt_bep20", {})

    async def test_unknown_method(self, session, make_member):
        member = make_member(balance="500")

        with pytest.raises(InvalidWithdrawalMethod):
            await WithdrawalService(session).requestWithdrawal(member.memberID, "50", "paypal")

    @pytest.mark.parametrize("amount,error", [
        ("9.99", BelowMinimum),
        ("50000.01", AboveMaximum),
        ("abc", ValidationError),
        (12.5, ValidationError),
    ])
    async def test_amount_bounds(self, session, make_member, amount, error):
        member = make_member(balance="100000")

        with pytest.raises(error):
            await WithdrawalService(session).requestWithdrawal(member.memberID, amount, "bank")

        session.refresh(member)
        assert member.availableBalance == Decimal("100000.00")

    async def test_insufficient_balance(self, session, make_member):
        member = make_member(balance="99.99")

        with pytest.raises(InsufficientBalance):
            await WithdrawalService(session).requestWithdrawal(member.memberID, "100", "bank")

        session.refresh(member)
        assert member.availableBalance == Decimal("99.99")
        assert session.query(Withdrawal).count() == 0

    async def test_daily_limit(self, session, make_member):
        """
        TEST: pending and completed requests of the last 24 hours count toward the limit.
        """
        member = make_member(balance="20000")
        service = WithdrawalService(session)
        first = await service.requestWithdrawal(member.memberID, "6000", "bank")
        await service.approveWithdrawal(first.withdrawalID)
        second = await service.requestWithdrawal(member.memberID, "4000", "bank")
        await service.approveWithdrawal(second.withdrawalID)

        with pytest.raises(DailyLimitExceeded):
            await service.requestWithdrawal(member.memberID, "10", "bank")

    async def test_pending_counts_toward_limit(self, session, make_member):
        Config.set(Config.WITHDRAWAL_SINGLE_PENDING, False)
        member = make_member(balance="20000")
        service = WithdrawalService(session)
        await service.requestWithdrawal(member.memberID, "6000", "bank")
        await service.requestWithdrawal(member.memberID, "4000", "bank")

        with pytest.raises(DailyLimitExceeded):
            await service.requestWithdrawal(member.memberID, "10", "bank")

    async def test_rejected_requests_free_the_limit(self, session, make_member):
        member = make_member(balance="20000")
        service = WithdrawalService(session)
        first = await service.requestWithdrawal(member.memberID, "10000", "bank")
        await service.rejectWithdrawal(first.withdrawalID, "wrong account")

        second = await service.requestWithdrawal(member.memberID, "10000", "bank")

        assert second.status == WithdrawalStatus.PENDING.value

    async def test_old_requests_outside_window(self, session, make_member):
        Config.set(Config.WITHDRAWAL_DAILY_LIMIT, "100")
        member = make_member(balance="500")
        service = WithdrawalService(session)
        old = await service.requestWithdrawal(member.memberID, "100", "bank")
        await service.approveWithdrawal(old.withdrawalID)
        session.execute(
            Withdrawal.__table__.update()
            .where(Withdrawal.__table__.c.withdrawalID == old.withdrawalID)
            .values(createdAt=utcnow() - timedelta(days=2))
        )
        session.commit()

        recent = await service.requestWithdrawal(member.memberID, "100", "bank")

        assert recent.status == WithdrawalStatus.PENDING.value

    async def test_request_event(self, session, make_member):
        received = []
        eventBus.subscribe(MLMEvents.WITHDRAWAL_REQUESTED, received.append)
        member = make_member(balance="500")

        await WithdrawalService(session).requestWithdrawal(member.memberID, "100", "bank")

        assert received[0]["netAmount"] == Decimal("85.00")


# =============================================================================
# TEST CLASS: One pending request per member
# =============================================================================

class TestSinglePending:

    async def test_second_request_refused_while_pending(self, session, make_member):
        member = make_member(balance="500")
        service = WithdrawalService(session)
        first = await service.requestWithdrawal(member.memberID, "100", "bank")

        with pytest.raises(DuplicatePendingWithdrawal) as exc:
            await service.requestWithdrawal(member.memberID, "50", "bank")

        assert exc.value.details["withdrawalId"] == first.withdrawalID
        session.refresh(member)
        assert member.availableBalance == Decimal("400.00")
        assert member.pendingBalance == Decimal("100.00")
        assert session.query(Withdrawal).count() == 1

    async def test_new_request_after_resolution(self, session, make_member):
        member = make_member(balance="500")
        service = WithdrawalService(session)
        first = await service.requestWithdrawal(member.memberID, "100", "bank")
        await service.cancelWithdrawal(first.withdrawalID, member.memberID)

        second = await service.requestWithdrawal(member.memberID, "50", "bank")

        assert second.status == WithdrawalStatus.PENDING.value

    async def test_other_members_unaffected(self, session, make_member):
        alice = make_member(balance="500")
        bob = make_member(balance="500")
        service = WithdrawalService(session)
        await service.requestWithdrawal(alice.memberID, "100", "bank")

        withdrawal = await service.requestWithdrawal(bob.memberID, "100", "bank")

        assert withdrawal.memberID == bob.memberID

    async def test_guard_can_be_disabled(self, session, make_member):
        Config.set(Config.WITHDRAWAL_SINGLE_PENDING, False)
        member = make_member(balance="500")
        service = WithdrawalService(session)
        await service.requestWithdrawal(member.memberID, "100", "bank")

        await service.requestWithdrawal(member.memberID, "50", "bank")

        assert session.query(Withdrawal).filter_by(status=WithdrawalStatus.PENDING.value).count() == 2


# =============================================================================
# TEST CLASS: Resolution
# =============================================================================

class TestResolution:

    async def test_approve_settles_pending(self, session, make_member):
        member = make_member(balance="500")
        service = WithdrawalService(session)
        withdrawal = await service.requestWithdrawal(member.memberID, "100", "bank")

        approved = await service.approveWithdrawal(withdrawal.withdrawalID, adminId=7, notes="paid")

        assert approved.status == WithdrawalStatus.COMPLETED.value
        assert approved.processedBy == 7
        assert approved.processedAt is not None
        session.refresh(member)
        assert member.availableBalance == Decimal("400.00")
        assert member.pendingBalance == Decimal("0.00")
        assert member.totalWithdrawn == Decimal("100.00")

    async def test_reject_restores_once(self, session, make_member):
        """
        TEST: rejecting a $50 withdrawal restores exactly $50.00, and only once.
        """
        member = make_member(balance="50")
        service = WithdrawalService(session)
        withdrawal = await service.requestWithdrawal(member.memberID, "50", "bank")
        session.refresh(member)
        assert member.availableBalance == Decimal("0.00")

        await service.rejectWithdrawal(withdrawal.withdrawalID, "invalid account")
        with pytest.raises(InvalidStateTransition):
            await service.rejectWithdrawal(withdrawal.withdrawalID, "again")

        session.refresh(member)
        assert member.availableBalance == Decimal("50.00")
        assert member.pendingBalance == Decimal("0.00")

    async def test_approve_after_reject_refused(self, session, make_member):
        member = make_member(balance="50")
        service = WithdrawalService(session)
        withdrawal = await service.requestWithdrawal(member.memberID, "50", "bank")
        await service.rejectWithdrawal(withdrawal.withdrawalID)

        with pytest.raises(InvalidStateTransition):
            await service.approveWithdrawal(withdrawal.withdrawalID)

        session.refresh(member)
        assert member.totalWithdrawn == Decimal("0.00")

    async def test_member_cancels_own_request(self, session, make_member):
        member = make_member(balance="80")
        service = WithdrawalService(session)
        withdrawal = await service.requestWithdrawal(member.memberID, "80", "bank")

        cancelled = await service.cancelWithdrawal(withdrawal.withdrawalID, member.memberID)

        assert cancelled.status == WithdrawalStatus.CANCELLED.value
        session.refresh(member)
        assert member.availableBalance == Decimal("80.00")

    async def test_cannot_cancel_someone_elses(self, session, make_member):
        owner = make_member(balance="80")
        other = make_member()
        withdrawal = await WithdrawalService(session).requestWithdrawal(owner.memberID, "80", "bank")

        with pytest.raises(WithdrawalNotFound):
            await WithdrawalService(session).cancelWithdrawal(withdrawal.withdrawalID, other.memberID)

    async def test_unknown_withdrawal(self, session):
        with pytest.raises(WithdrawalNotFound):
            await WithdrawalService(session).approveWithdrawal(321)

    async def test_resolution_event(self, session, make_member):
        received = []
        eventBus.subscribe(MLMEvents.WITHDRAWAL_RESOLVED, received.append)
        member = make_member(balance="50")
        service = WithdrawalService(session)
        withdrawal = await service.requestWithdrawal(member.memberID, "50", "bank")

        await service.approveWithdrawal(withdrawal.withdrawalID)

        assert received[0]["status"] == WithdrawalStatus.COMPLETED.value
