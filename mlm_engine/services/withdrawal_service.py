# mlm_engine/services/withdrawal_service.py
"""
Withdrawal service - requests, method deductions and admin resolution.

The gross amount moves from available to pending balance at request time.
Approval settles the pending amount; rejection or cancellation moves it back.
Status changes are conditional updates on 'pending', so each withdrawal is
resolved, and its money restored, exactly once. Unless
WITHDRAWAL_SINGLE_PENDING is switched off, a member has at most one pending
request.
"""
import re
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models.base import utcnow
from models.member import Member
from models.withdrawal import Withdrawal, WithdrawalStatus
from mlm_engine.config.plan import (
    withdrawal_minimum,
    withdrawal_maximum,
    withdrawal_daily_limit,
    withdrawal_deductions,
    withdrawal_single_pending,
)
from mlm_engine.errors import (
    BelowMinimum,
    AboveMaximum,
    DailyLimitExceeded,
    DuplicatePendingWithdrawal,
    InsufficientBalance,
    InvalidPaymentDetails,
    InvalidStateTransition,
    InvalidWithdrawalMethod,
    MemberNotFound,
    ValidationError,
    WithdrawalNotFound,
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import percent_of, to_money
from mlm_engine.utils.payment_details import WALLET_PATTERN

logger = logging.getLogger(__name__)

ACCOUNT_PATTERN = re.compile(r"^[A-Za-z0-9_\-.@ ]{3,100}$")


class WithdrawalService:
    """Service for member withdrawals."""

    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    async def requestWithdrawal(
            self,
            memberId: int,
            amount: Any,
            method: str,
            details: Optional[Dict[str, Any]] = None
    ) -> Withdrawal:
        """
        Reserve funds and create a pending withdrawal.

        Raises:
            BelowMinimum, AboveMaximum, InvalidWithdrawalMethod,
            InvalidPaymentDetails, DuplicatePendingWithdrawal,
            DailyLimitExceeded, InsufficientBalance, MemberNotFound
        """
        try:
            amount = to_money(amount)
        except ValueError as e:
            raise ValidationError(str(e), {"field": "amount"})

        minimum = withdrawal_minimum()
        if amount < minimum:
            raise BelowMinimum(f"Minimum withdrawal is {minimum}", {"minimum": str(minimum)})

        maximum = withdrawal_maximum()
        if amount > maximum:
            raise AboveMaximum(f"Maximum withdrawal is {maximum}", {"maximum": str(maximum)})

        deductions = withdrawal_deductions()
        if method not in deductions:
            raise InvalidWithdrawalMethod(
                f"Unsupported withdrawal method '{method}'",
                {"method": method, "supported": sorted(deductions)}
            )

        details = self._validateDetails(method, details or {})

        deductionPct = deductions[method]
        deduction = percent_of(amount, deductionPct)
        netAmount = amount - deduction

        try:
            member = self.session.query(Member).filter_by(
                memberID=memberId
            ).populate_existing().with_for_update().first()

            if not member:
                raise MemberNotFound(f"Member {memberId} not found", {"memberId": memberId})

            if withdrawal_single_pending():
                self._checkNoPending(memberId)
            self._checkDailyLimit(memberId, amount)

            # Reserve: available -> pending in one conditional update
            table = Member.__table__
            result = self.session.execute(
                table.update()
                .where(table.c.memberID == memberId)
                .where(table.c.availableBalance >= amount)
                .values(
                    availableBalance=table.c.availableBalance - amount,
                    pendingBalance=table.c.pendingBalance + amount
                )
            )
            if result.rowcount != 1:
                raise InsufficientBalance(
                    f"Available balance {member.availableBalance} is below {amount}",
                    {"requested": str(amount)}
                )

            withdrawal = Withdrawal(
                memberID=memberId,
                amount=amount,
                method=method,
                deductionPercentage=deductionPct,
                deduction=deduction,
                netAmount=netAmount,
                details=details,
                status=WithdrawalStatus.PENDING.value
            )
            self.session.add(withdrawal)
            self.session.flush()
            withdrawalId = withdrawal.withdrawalID
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit(MLMEvents.WITHDRAWAL_REQUESTED, {
            "withdrawalId": withdrawalId,
            "memberId": memberId,
            "amount": amount,
            "method": method,
            "deduction": deduction,
            "netAmount": netAmount,
        })

        logger.info(
            f"Withdrawal {withdrawalId} requested: member={memberId}, amount={amount}, "
            f"method={method}, deduction={deduction}, net={netAmount}"
        )
        return withdrawal

    async def approveWithdrawal(
            self,
            withdrawalId: int,
            adminId: Optional[int] = None,
            notes: Optional[str] = None
    ) -> Withdrawal:
        """Mark paid out. Available balance is untouched, it was debited at request."""
        return await self._resolve(withdrawalId, WithdrawalStatus.COMPLETED, adminId, notes)

    async def rejectWithdrawal(
            self,
            withdrawalId: int,
            reason: Optional[str] = None,
            adminId: Optional[int] = None
    ) -> Withdrawal:
        """Refuse and restore the gross amount to available balance."""
        return await self._resolve(withdrawalId, WithdrawalStatus.REJECTED, adminId, reason)

    async def cancelWithdrawal(self, withdrawalId: int, memberId: int) -> Withdrawal:
        """Member withdraws their own pending request; same restore as rejection."""
        withdrawal = self.session.get(Withdrawal, withdrawalId)
        if not withdrawal or withdrawal.memberID != memberId:
            self.session.rollback()
            raise WithdrawalNotFound(f"Withdrawal {withdrawalId} not found")

        return await self._resolve(withdrawalId, WithdrawalStatus.CANCELLED, None, "cancelled by member")

    # ============================================================
    # INTERNAL
    # ============================================================

    async def _resolve(
            self,
            withdrawalId: int,
            newStatus: WithdrawalStatus,
            adminId: Optional[int],
            notes: Optional[str]
    ) -> Withdrawal:
        wTable = Withdrawal.__table__
        mTable = Member.__table__

        try:
            # Exactly-once transition out of pending
            result = self.session.execute(
                wTable.update()
                .where(wTable.c.withdrawalID == withdrawalId)
                .where(wTable.c.status == WithdrawalStatus.PENDING.value)
                .values(
                    status=newStatus.value,
                    processedBy=adminId,
                    adminNotes=notes,
                    processedAt=utcnow()
                )
            )

            if result.rowcount != 1:
                existing = self.session.get(Withdrawal, withdrawalId)
                if existing is None:
                    raise WithdrawalNotFound(f"Withdrawal {withdrawalId} not found")
                raise InvalidStateTransition(
                    f"Withdrawal {withdrawalId} is already {existing.status}",
                    {"status": existing.status}
                )

            row = self.session.execute(
                wTable.select().where(wTable.c.withdrawalID == withdrawalId)
            ).one()

            if newStatus == WithdrawalStatus.COMPLETED:
                values = dict(
                    pendingBalance=mTable.c.pendingBalance - row.amount,
                    totalWithdrawn=mTable.c.totalWithdrawn + row.amount
                )
            else:
                values = dict(
                    pendingBalance=mTable.c.pendingBalance - row.amount,
                    availableBalance=mTable.c.availableBalance + row.amount
                )

            moved = self.session.execute(
                mTable.update()
                .where(mTable.c.memberID == row.memberID)
                .where(mTable.c.pendingBalance >= row.amount)
                .values(**values)
            )
            if moved.rowcount != 1:
                raise InvalidStateTransition(
                    f"Pending balance of member {row.memberID} does not cover withdrawal {withdrawalId}"
                )

            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        self.session.expire_all()
        withdrawal = self.session.get(Withdrawal, withdrawalId)

        await eventBus.emit(MLMEvents.WITHDRAWAL_RESOLVED, {
            "withdrawalId": withdrawalId,
            "memberId": row.memberID,
            "amount": row.amount,
            "status": newStatus.value,
            "processedBy": adminId,
        })

        logger.info(f"Withdrawal {withdrawalId} {newStatus.value} (admin={adminId})")
        return withdrawal

    def _validateDetails(self, method: str, details: Dict[str, Any]) -> Dict[str, Any]:
        """Method-specific payout details."""
        if not isinstance(details, dict):
            raise InvalidPaymentDetails("Withdrawal details must be an object")

        if method == "usdt_bep20":
            wallet = details.get("walletAddress")
            if not isinstance(wallet, str) or not WALLET_PATTERN.match(wallet.strip()):
                raise InvalidPaymentDetails("A valid BEP20 'walletAddress' is required", {"field": "walletAddress"})
            return {"walletAddress": wallet.strip().lower()}

        if method == "p2p":
            accountId = details.get("accountId")
            if not isinstance(accountId, str) or not ACCOUNT_PATTERN.match(accountId.strip()):
                raise InvalidPaymentDetails("'accountId' is required for P2P withdrawals", {"field": "accountId"})
            return {
                "accountId": accountId.strip(),
                "platform": str(details.get("platform", "other")),
            }

        return dict(details)

    def _checkNoPending(self, memberId: int) -> None:
        """One open request at a time; runs under the member row lock."""
        pending = self.session.query(Withdrawal.withdrawalID).filter_by(
            memberID=memberId, status=WithdrawalStatus.PENDING.value
        ).first()
        if pending:
            raise DuplicatePendingWithdrawal(
                f"Member {memberId} already has pending withdrawal {pending.withdrawalID}",
                {"withdrawalId": pending.withdrawalID}
            )

    def _checkDailyLimit(self, memberId: int, amount: Decimal) -> None:
        since = utcnow() - timedelta(days=1)
        # Money columns are cents on the SQL side; SUM comes back as Decimal
        requested = self.session.query(
            func.coalesce(func.sum(Withdrawal.amount), Decimal("0.00"))
        ).filter(
            Withdrawal.memberID == memberId,
            Withdrawal.createdAt >= since,
            Withdrawal.status.in_([WithdrawalStatus.PENDING.value, WithdrawalStatus.COMPLETED.value])
        ).scalar()

        limit = withdrawal_daily_limit()
        if requested + amount > limit:
            raise DailyLimitExceeded(
                f"Daily withdrawal limit {limit} would be exceeded",
                {"limit": str(limit), "alreadyRequested": str(requested)}
            )
