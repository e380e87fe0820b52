# mlm_engine/services/fund_request_service.py
"""
Fund request service - wallet top-ups approved by an administrator.

A request holds no money until approval. Approval and rejection are
conditional status updates on 'pending', so a request credits the member's
available balance at most once.
"""
from typing import Any, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from models.base import utcnow
from models.member import Member
from models.fund_request import FundRequest, FundRequestStatus
from mlm_engine.config.plan import fund_request_currencies
from mlm_engine.errors import (
    DuplicateProof,
    FundRequestNotFound,
    InvalidStateTransition,
    MemberNotFound,
    ValidationError,
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import to_money

logger = logging.getLogger(__name__)


class FundRequestService:
    """Service for admin-approved wallet top-ups."""

    def __init__(self, session: Session):
        self.session = session

    async def createFundRequest(
            self,
            memberId: int,
            amount: Any,
            currency: str = "USDT",
            paymentReference: Optional[str] = None
    ) -> FundRequest:
        """
        Record a pending top-up request.

        Raises:
            ValidationError, MemberNotFound, DuplicateProof
        """
        try:
            amount = to_money(amount)
        except ValueError as e:
            raise ValidationError(str(e), {"field": "amount"})

        if amount <= 0:
            raise ValidationError("Amount must be positive", {"field": "amount"})

        currency = str(currency or "").upper()
        supported = fund_request_currencies()
        if currency not in supported:
            raise ValidationError(
                f"Unsupported currency '{currency}'",
                {"field": "currency", "supported": supported}
            )

        if paymentReference is not None:
            paymentReference = str(paymentReference).strip().lower() or None

        try:
            if self.session.get(Member, memberId) is None:
                raise MemberNotFound(f"Member {memberId} not found", {"memberId": memberId})

            request = FundRequest(
                memberID=memberId,
                amount=amount,
                currency=currency,
                paymentReference=paymentReference,
                status=FundRequestStatus.PENDING.value
            )
            self.session.add(request)

            # Unique paymentReference decides between concurrent submissions
            try:
                self.session.flush()
            except IntegrityError:
                self.session.rollback()
                raise DuplicateProof("Payment reference already used", {"field": "paymentReference"})

            requestId = request.requestID
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        await eventBus.emit(MLMEvents.FUND_REQUEST_CREATED, {
            "requestId": requestId,
            "memberId": memberId,
            "amount": amount,
            "currency": currency,
        })

        logger.info(f"Fund request {requestId} created: member={memberId}, amount={amount} {currency}")
        return request

    async def approveFundRequest(
            self,
            requestId: int,
            adminId: Optional[int] = None,
            notes: Optional[str] = None
    ) -> FundRequest:
        """Approve and credit the requested amount to available balance."""
        return await self._resolve(requestId, FundRequestStatus.APPROVED, adminId, notes)

    async def rejectFundRequest(
            self,
            requestId: int,
            reason: Optional[str] = None,
            adminId: Optional[int] = None
    ) -> FundRequest:
        return await self._resolve(requestId, FundRequestStatus.REJECTED, adminId, reason)

    # ============================================================
    # INTERNAL
    # ============================================================

    async def _resolve(
            self,
            requestId: int,
            newStatus: FundRequestStatus,
            adminId: Optional[int],
            notes: Optional[str]
    ) -> FundRequest:
        rTable = FundRequest.__table__
        mTable = Member.__table__

        try:
            result = self.session.execute(
                rTable.update()
                .where(rTable.c.requestID == requestId)
                .where(rTable.c.status == FundRequestStatus.PENDING.value)
                .values(
                    status=newStatus.value,
                    processedBy=adminId,
                    adminNotes=notes,
                    processedAt=utcnow()
                )
            )

            if result.rowcount != 1:
                existing = self.session.get(FundRequest, requestId)
                if existing is None:
                    raise FundRequestNotFound(f"Fund request {requestId} not found", {"requestId": requestId})
                raise InvalidStateTransition(
                    f"Fund request {requestId} is already {existing.status}",
                    {"status": existing.status}
                )

            row = self.session.execute(
                rTable.select().where(rTable.c.requestID == requestId)
            ).one()

            if newStatus == FundRequestStatus.APPROVED:
                self.session.execute(
                    mTable.update()
                    .where(mTable.c.memberID == row.memberID)
                    .values(availableBalance=mTable.c.availableBalance + row.amount)
                )

            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        self.session.expire_all()
        request = self.session.get(FundRequest, requestId)

        await eventBus.emit(MLMEvents.FUND_REQUEST_RESOLVED, {
            "requestId": requestId,
            "memberId": row.memberID,
            "amount": row.amount,
            "status": newStatus.value,
            "processedBy": adminId,
        })

        logger.info(f"Fund request {requestId} {newStatus.value} (admin={adminId})")
        return request
