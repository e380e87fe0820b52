# tests/test_activation_service.py
"""
Tests for activation and top-up transactions.

Run:
    pytest tests/test_activation_service.py -v
"""
from decimal import Decimal

import pytest

from models import (
    ActivationTransaction,
    ActivationStatus,
    ActivationType,
    IncomeEntry,
    IncomeKind,
    PayoutQueueItem,
)
from mlm_engine.errors import (
    DuplicatePendingTransaction,
    DuplicateProof,
    InsufficientBalance,
    InvalidPaymentDetails,
    InvalidRank,
    InvalidStateTransition,
    MemberNotFound,
    SequenceViolation,
    TransactionNotFound,
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.activation_service import ActivationService


def convert(amount="5"):
    return {"convertFromBalance": amount}


# =============================================================================
# TEST CLASS: Balance conversion (completes immediately)
# =============================================================================

class TestBalanceConversion:

    async def test_referral_is_half_of_azurite(self, session, make_member):
        """
        TEST: Azurite ($5) activation pays the sponsor exactly one referral entry of $2.50.
        """
        sponsor = make_member(rank="azurite", name="S")
        member = make_member(sponsor=sponsor, balance="100", name="M")

        transaction = await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        assert transaction.status == ActivationStatus.COMPLETED.value
        assert transaction.txType == ActivationType.ACTIVATION.value
        assert transaction.incomeDistributed is True
        assert transaction.pendingKey is None

        referrals = session.query(IncomeEntry).filter_by(kind=IncomeKind.REFERRAL.value).all()
        assert len(referrals) == 1
        assert referrals[0].beneficiaryID == sponsor.memberID
        assert referrals[0].amount == Decimal("2.50")

    async def test_debits_balance_and_sets_rank(self, session, make_member):
        member = make_member(balance="100")

        await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        session.refresh(member)
        assert member.availableBalance == Decimal("95.00")
        assert member.rank == "azurite"
        assert member.activatedAt is not None

    async def test_income_is_queued_not_credited(self, session, make_member):
        """
        TEST: income reaches balances only through the payout queue.
        """
        sponsor = make_member(rank="azurite")
        member = make_member(sponsor=sponsor, balance="5")

        await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        session.refresh(sponsor)
        assert sponsor.availableBalance == Decimal("0.00")
        queued = session.query(PayoutQueueItem).filter_by(beneficiaryID=sponsor.memberID).all()
        assert sum(item.amount for item in queued) == Decimal("2.75")  # referral + level 1

    async def test_insufficient_balance(self, session, make_member):
        member = make_member(balance="4.99")

        with pytest.raises(InsufficientBalance):
            await ActivationService(session).createActivation(
                member.memberID, "azurite", "fund_conversion", convert()
            )

        assert session.query(ActivationTransaction).count() == 0

    async def test_conversion_amount_must_match_tier(self, session, make_member):
        member = make_member(balance="100")

        with pytest.raises(InvalidPaymentDetails):
            await ActivationService(session).createActivation(
                member.memberID, "azurite", "fund_conversion", convert("4")
            )

    async def test_team_counters(self, session, chain, make_member):
        member = make_member(sponsor=chain[-1], balance="5")

        await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        session.refresh(chain[-1])
        session.refresh(chain[0])
        assert chain[-1].directReferrals == 1
        assert chain[-1].teamSize == 1
        assert chain[0].teamSize == 1

    async def test_completion_event_emitted(self, session, make_member):
        received = []
        eventBus.subscribe(MLMEvents.ACTIVATION_COMPLETED, received.append)
        member = make_member(balance="5")

        await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        assert len(received) == 1
        assert received[0]["memberId"] == member.memberID
        assert received[0]["rank"] == "azurite"


# =============================================================================
# TEST CLASS: Rank sequence
# =============================================================================

class TestSequence:

    async def test_inactive_must_start_at_first_tier(self, session, make_member):
        member = make_member(balance="100")

        with pytest.raises(SequenceViolation):
            await ActivationService(session).createActivation(
                member.memberID, "pearl", "fund_conversion", convert("10")
            )

    async def test_same_tier_is_retopup(self, session, make_member):
        sponsor = make_member(rank="azurite")
        member = make_member(sponsor=sponsor, rank="azurite", balance="100")

        transaction = await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        assert transaction.txType == ActivationType.RETOPUP.value
        entry = session.query(IncomeEntry).filter_by(beneficiaryID=sponsor.memberID, level=None).one()
        assert entry.kind == IncomeKind.RE_TOPUP.value

    async def test_next_tier_is_upgrade(self, session, make_member):
        member = make_member(rank="azurite", balance="100")

        transaction = await ActivationService(session).createActivation(
            member.memberID, "pearl", "fund_conversion", convert("10")
        )

        assert transaction.txType == ActivationType.UPGRADE.value
        assert transaction.previousRank == "azurite"

    async def test_skipping_a_tier_rejected(self, session, make_member):
        member = make_member(rank="azurite", balance="100")

        with pytest.raises(SequenceViolation):
            await ActivationService(session).createActivation(
                member.memberID, "ruby", "fund_conversion", convert("20")
            )

    async def test_downgrade_rejected(self, session, make_member):
        member = make_member(rank="pearl", balance="100")

        with pytest.raises(SequenceViolation):
            await ActivationService(session).createActivation(
                member.memberID, "azurite", "fund_conversion", convert()
            )

    async def test_unknown_rank(self, session, make_member):
        member = make_member(balance="100")

        with pytest.raises(InvalidRank):
            await ActivationService(session).createActivation(
                member.memberID, "platinum", "fund_conversion", convert()
            )

    async def test_unknown_member(self, session):
        with pytest.raises(MemberNotFound):
            await ActivationService(session).createActivation(
                999, "azurite", "fund_conversion", convert()
            )


# =============================================================================
# TEST CLASS: Externally paid activations
# =============================================================================

class TestPendingActivations:

    async def test_onchain_stays_pending(self, session, make_member, tx_hash, wallet):
        member = make_member()

        transaction = await ActivationService(session).createActivation(
            member.memberID, "azurite", "usdt_bep20",
            {"transactionHash": tx_hash(1), "fromWallet": wallet}
        )

        assert transaction.status == ActivationStatus.PENDING.value
        assert transaction.paymentProof == tx_hash(1)
        assert transaction.pendingKey == f"pending:{member.memberID}"
        session.refresh(member)
        assert member.rank == "inactive"
        assert session.query(IncomeEntry).count() == 0

    async def test_second_pending_rejected(self, session, make_member, tx_hash, wallet):
        """
        TEST: one pending transaction per member, whatever the method.
        """
        member = make_member(balance="100")
        service = ActivationService(session)
        await service.createActivation(
            member.memberID, "azurite", "usdt_bep20",
            {"transactionHash": tx_hash(1), "fromWallet": wallet}
        )

        with pytest.raises(DuplicatePendingTransaction):
            await ActivationService(session).createActivation(
                member.memberID, "azurite", "p2p", {"p2pReference": "REF-0001"}
            )

        with pytest.raises(DuplicatePendingTransaction):
            await ActivationService(session).createActivation(
                member.memberID, "azurite", "fund_conversion", convert()
            )

        session.refresh(member)
        assert member.availableBalance == Decimal("100.00")

    async def test_proof_reuse_rejected(self, session, make_member, tx_hash, wallet):
        first = make_member()
        second = make_member()
        details = {"transactionHash": tx_hash(7), "fromWallet": wallet}

        await ActivationService(session).createActivation(first.memberID, "azurite", "usdt_bep20", details)

        with pytest.raises(DuplicateProof):
            await ActivationService(session).createActivation(second.memberID, "azurite", "usdt_bep20", details)

    async def test_proof_reuse_is_case_insensitive(self, session, make_member, wallet):
        first = make_member()
        second = make_member()
        lower = "0x" + "ab" * 32

        await ActivationService(session).createActivation(
            first.memberID, "azurite", "usdt_bep20", {"transactionHash": lower, "fromWallet": wallet}
        )

        upper = "0x" + "AB" * 32
        with pytest.raises(DuplicateProof):
            await ActivationService(session).createActivation(
                second.memberID, "azurite", "usdt_bep20", {"transactionHash": upper, "fromWallet": wallet}
            )

    async def test_confirm_completes_and_distributes(self, session, make_member, tx_hash, wallet):
        sponsor = make_member(rank="azurite")
        member = make_member(sponsor=sponsor)
        pending = await ActivationService(session).createActivation(
            member.memberID, "azurite", "usdt_bep20",
            {"transactionHash": tx_hash(2), "fromWallet": wallet}
        )

        confirmed = await ActivationService(session).confirmActivation(pending.transactionID, adminId=1)

        assert confirmed.status == ActivationStatus.COMPLETED.value
        assert confirmed.processedBy == 1
        assert confirmed.pendingKey is None
        session.refresh(member)
        assert member.rank == "azurite"
        assert session.query(IncomeEntry).filter_by(beneficiaryID=sponsor.memberID).count() == 2

    async def test_confirm_twice_rejected(self, session, make_member):
        member = make_member()
        pending = await ActivationService(session).createActivation(
            member.memberID, "azurite", "p2p", {"p2pReference": "REF-0002"}
        )
        await ActivationService(session).confirmActivation(pending.transactionID)

        with pytest.raises(InvalidStateTransition):
            await ActivationService(session).confirmActivation(pending.transactionID)

        session.refresh(pending)
        assert pending.status == ActivationStatus.COMPLETED.value

    async def test_reject_frees_member(self, session, make_member, tx_hash, wallet):
        member = make_member()
        pending = await ActivationService(session).createActivation(
            member.memberID, "azurite", "usdt_bep20",
            {"transactionHash": tx_hash(3), "fromWallet": wallet}
        )

        rejected = await ActivationService(session).rejectActivation(pending.transactionID, "no funds received", 1)

        assert rejected.status == ActivationStatus.REJECTED.value
        assert rejected.pendingKey is None
        assert rejected.rejectionReason == "no funds received"

        retry = await ActivationService(session).createActivation(
            member.memberID, "azurite", "usdt_bep20",
            {"transactionHash": tx_hash(4), "fromWallet": wallet}
        )
        assert retry.status == ActivationStatus.PENDING.value

    async def test_reject_completed_rejected(self, session, make_member):
        member = make_member(balance="5")
        done = await ActivationService(session).createActivation(
            member.memberID, "azurite", "fund_conversion", convert()
        )

        with pytest.raises(InvalidStateTransition):
            await ActivationService(session).rejectActivation(done.transactionID)

    async def test_unknown_transaction(self, session):
        with pytest.raises(TransactionNotFound):
            await ActivationService(session).confirmActivation(12345)
