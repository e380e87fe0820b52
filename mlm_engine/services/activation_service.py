# mlm_engine/services/activation_service.py
"""
Activation service - validates and records activation / top-up requests.

Balance conversions complete immediately. On-chain and P2P payments stay
pending until an administrator confirms or rejects them. Completion applies
the rank and runs income distribution in the same database transaction.
"""
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from core.retry import ConflictError
from models.base import utcnow
from models.member import Member
from models.activation import ActivationTransaction, ActivationStatus, ActivationType
from mlm_engine.config.ranks import INACTIVE, RankTier, first_rank, get_rank, rank_index
from mlm_engine.errors import (
    SequenceViolation,
    DuplicatePendingTransaction,
    DuplicateProof,
    InsufficientBalance,
    InvalidPaymentDetails,
    InvalidStateTransition,
    MemberNotFound,
    TransactionNotFound,
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.income_service import IncomeDistributionService
from mlm_engine.utils.chain_walker import ChainWalker
from mlm_engine.utils.payment_details import (
    BalanceConversion,
    OnChainPayment,
    PaymentDetails,
    parse_payment_details,
)

logger = logging.getLogger(__name__)


class ActivationService:
    """Service for activation and top-up transactions."""

    def __init__(self, session: Session):
        self.session = session
        self.events: List[Tuple[str, Dict]] = []

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    async def createActivation(
            self,
            memberId: int,
            targetRank: str,
            paymentMethod: str,
            paymentDetails: Optional[Dict[str, Any]]
    ) -> ActivationTransaction:
        """
        Validate and record an activation / top-up.

        Args:
            memberId: Activating member
            targetRank: Catalog key of the tier being bought
            paymentMethod: usdt_bep20, fund_conversion or p2p
            paymentDetails: Raw payload for the method

        Returns:
            The transaction, pending or (balance conversion) completed

        Raises:
            InvalidRank, SequenceViolation, DuplicatePendingTransaction,
            DuplicateProof, InsufficientBalance, InvalidPaymentDetails,
            MemberNotFound
        """
        # Input validation, nothing touched yet
        tier = get_rank(targetRank)
        details = parse_payment_details(paymentMethod, paymentDetails)

        try:
            member = self.session.query(Member).filter_by(
                memberID=memberId
            ).populate_existing().with_for_update().first()

            if not member:
                raise MemberNotFound(f"Member {memberId} not found", {"memberId": memberId})

            txType = self._checkSequence(member, tier)

            if isinstance(details, BalanceConversion):
                if details.convertFromBalance != tier.activationAmount:
                    raise InvalidPaymentDetails(
                        f"convertFromBalance must equal {tier.activationAmount} for {tier.key}",
                        {"expected": str(tier.activationAmount), "got": str(details.convertFromBalance)}
                    )
                if member.availableBalance < tier.activationAmount:
                    raise InsufficientBalance(
                        f"Available balance {member.availableBalance} is below {tier.activationAmount}",
                        {"required": str(tier.activationAmount)}
                    )

            self._checkNoPending(memberId)
            if details.proof is not None:
                self._checkProofUnused(details.proof)

            transaction = ActivationTransaction(
                memberID=memberId,
                targetRank=tier.key,
                previousRank=member.rank,
                txType=txType.value,
                paymentMethod=details.method.value,
                paymentProof=details.proof,
                fromWallet=details.fromWallet if isinstance(details, OnChainPayment) else None,
                amount=tier.activationAmount,
                status=ActivationStatus.PENDING.value,
                pendingKey=ActivationTransaction.pending_key_for(memberId),
                incomeDistributed=False
            )
            self.session.add(transaction)

            # The unique pendingKey / paymentProof make this insert the atomic check
            try:
                self.session.flush()
            except IntegrityError:
                self.session.rollback()
                raise self._classifyConflict(memberId, details)

            if isinstance(details, BalanceConversion):
                self._debitBalance(memberId, tier.activationAmount)
                await self._complete(transaction, member)

            transactionId, status = transaction.transactionID, transaction.status
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit_all(self.events)

        logger.info(
            f"Activation {transactionId} created: member={memberId}, "
            f"rank={tier.key}, method={details.method.value}, status={status}"
        )
        return transaction

    async def confirmActivation(self, transactionId: int, adminId: Optional[int] = None) -> ActivationTransaction:
        """
        Approve an externally paid activation and distribute its income.
        """
        try:
            transaction = self.session.query(ActivationTransaction).filter_by(
                transactionID=transactionId
            ).populate_existing().with_for_update().first()

            if not transaction:
                raise TransactionNotFound(f"Transaction {transactionId} not found")

            if transaction.status != ActivationStatus.PENDING.value:
                raise InvalidStateTransition(
                    f"Transaction {transactionId} is {transaction.status}, cannot confirm"
                )

            member = self.session.query(Member).filter_by(
                memberID=transaction.memberID
            ).populate_existing().with_for_update().first()

            # Rank may have moved since the request; re-check the sequence
            tier = get_rank(transaction.targetRank)
            self._checkSequence(member, tier)

            transaction.processedBy = adminId
            await self._complete(transaction, member)
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit_all(self.events)
        logger.info(f"Activation {transactionId} confirmed by admin {adminId}")
        return transaction

    async def rejectActivation(
            self,
            transactionId: int,
            reason: Optional[str] = None,
            adminId: Optional[int] = None
    ) -> ActivationTransaction:
        """Reject a pending activation; frees the member for a new request."""
        try:
            transaction = self.session.query(ActivationTransaction).filter_by(
                transactionID=transactionId
            ).populate_existing().with_for_update().first()

            if not transaction:
                raise TransactionNotFound(f"Transaction {transactionId} not found")

            if transaction.status != ActivationStatus.PENDING.value:
                raise InvalidStateTransition(
                    f"Transaction {transactionId} is {transaction.status}, cannot reject"
                )

            transaction.status = ActivationStatus.REJECTED.value
            transaction.pendingKey = None
            transaction.rejectionReason = reason
            transaction.processedBy = adminId
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit(MLMEvents.ACTIVATION_REJECTED, {
            "transactionId": transactionId,
            "memberId": transaction.memberID,
            "reason": reason,
        })
        logger.info(f"Activation {transactionId} rejected: {reason}")
        return transaction

    # ============================================================
    # INTERNAL
    # ============================================================

    @staticmethod
    def _checkSequence(member: Member, tier: RankTier) -> ActivationType:
        """
        Inactive members start at the first tier; active members may repeat
        their tier or move up exactly one.
        """
        if member.rank == INACTIVE:
            firstTier = first_rank()
            if tier.key != firstTier.key:
                raise SequenceViolation(
                    f"First activation must be {firstTier.key}, not {tier.key}",
                    {"currentRank": INACTIVE, "targetRank": tier.key}
                )
            return ActivationType.ACTIVATION

        currentIndex = rank_index(member.rank)
        if tier.index == currentIndex:
            return ActivationType.RETOPUP
        if tier.index == currentIndex + 1:
            return ActivationType.UPGRADE

        raise SequenceViolation(
            f"Cannot move from {member.rank} to {tier.key}",
            {"currentRank": member.rank, "targetRank": tier.key}
        )

    def _checkNoPending(self, memberId: int) -> None:
        pending = self.session.query(ActivationTransaction.transactionID).filter_by(
            pendingKey=ActivationTransaction.pending_key_for(memberId)
        ).first()
        if pending:
            raise DuplicatePendingTransaction(
                f"Member {memberId} already has pending transaction {pending.transactionID}",
                {"transactionId": pending.transactionID}
            )

    def _checkProofUnused(self, proof: str) -> None:
        used = self.session.query(ActivationTransaction.transactionID).filter_by(
            paymentProof=proof
        ).first()
        if used:
            raise DuplicateProof("Payment proof already used", {"transactionId": used.transactionID})

    def _classifyConflict(self, memberId: int, details: PaymentDetails) -> Exception:
        """Name the constraint a concurrent writer beat us to."""
        try:
            self._checkNoPending(memberId)
            if details.proof is not None:
                self._checkProofUnused(details.proof)
        except (DuplicatePendingTransaction, DuplicateProof) as e:
            return e
        # The winner already finished; the whole unit can run again
        return ConflictError(f"Activation insert for member {memberId} lost a race")

    def _debitBalance(self, memberId: int, amount) -> None:
        """Conditional atomic debit; fails instead of going negative."""
        table = Member.__table__
        result = self.session.execute(
            table.update()
            .where(table.c.memberID == memberId)
            .where(table.c.availableBalance >= amount)
            .values(availableBalance=table.c.availableBalance - amount)
        )
        if result.rowcount != 1:
            raise InsufficientBalance(
                f"Available balance is below {amount}",
                {"required": str(amount)}
            )

    async def _complete(self, transaction: ActivationTransaction, member: Member) -> None:
        """Mark completed, apply the rank and distribute income."""
        firstActivation = member.rank == INACTIVE

        transaction.status = ActivationStatus.COMPLETED.value
        transaction.completedAt = utcnow()
        transaction.pendingKey = None

        member.rank = transaction.targetRank
        if firstActivation:
            member.activatedAt = transaction.completedAt
            self._updateTeamCounters(member)

        self.session.flush()

        incomeService = IncomeDistributionService(self.session)
        distribution = await incomeService.distribute(transaction)

        self.events.append((MLMEvents.ACTIVATION_COMPLETED, {
            "transactionId": transaction.transactionID,
            "memberId": member.memberID,
            "rank": transaction.targetRank,
            "txType": transaction.txType,
            "amount": transaction.amount,
            "paymentMethod": transaction.paymentMethod,
        }))
        self.events.extend(incomeService.events)

        logger.info(
            f"Activation {transaction.transactionID} completed: member {member.memberID} "
            f"is now {member.rank}, distributed {distribution['totalDistributed']}"
        )

    def _updateTeamCounters(self, member: Member) -> None:
        """First activation: sponsor gains a direct referral, every ancestor a team member."""
        if member.sponsorID is None:
            return

        table = Member.__table__
        self.session.execute(
            table.update()
            .where(table.c.memberID == member.sponsorID)
            .values(directReferrals=table.c.directReferrals + 1)
        )

        def bump(ancestor: Member, level: int) -> bool:
            self.session.execute(
                table.update()
                .where(table.c.memberID == ancestor.memberID)
                .values(teamSize=table.c.teamSize + 1)
            )
            return True

        ChainWalker(self.session).walk_upline(member, bump)
