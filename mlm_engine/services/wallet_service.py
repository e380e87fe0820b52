# mlm_engine/services/wallet_service.py
"""
Wallet service - member-to-member transfers and locked income claims.

Both operations move money between balance fields with conditional atomic
updates inside one database transaction; the debit side never goes
negative and a lost race leaves nothing half-applied.
"""
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
import logging

from models.base import utcnow
from models.member import Member
from models.fund_transfer import FundTransfer
from mlm_engine.config.plan import claim_direct_referrals
from mlm_engine.errors import (
    ClaimNotAllowed,
    InsufficientBalance,
    InvalidTransfer,
    MemberNotFound,
    ValidationError,
)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import to_money

logger = logging.getLogger(__name__)


class WalletService:
    """Service for balance transfers and locked income claims."""

    def __init__(self, session: Session):
        self.session = session

    # ============================================================
    # PUBLIC API - Main entry points
    # ============================================================

    async def transferFunds(
            self,
            senderId: int,
            recipientId: Any,
            amount: Any,
            note: Optional[str] = None
    ) -> FundTransfer:
        """
        Move available balance from one member to another.

        Raises:
            ValidationError, InvalidTransfer, MemberNotFound, InsufficientBalance
        """
        try:
            amount = to_money(amount)
        except ValueError as e:
            raise ValidationError(str(e), {"field": "amount"})

        if amount <= 0:
            raise ValidationError("Transfer amount must be positive", {"field": "amount"})

        if not isinstance(recipientId, int) or isinstance(recipientId, bool):
            raise ValidationError("'recipientId' must be a member id", {"field": "recipientId"})

        if recipientId == senderId:
            raise InvalidTransfer("Cannot transfer funds to yourself", {"recipientId": recipientId})

        table = Member.__table__

        try:
            # Lock both rows in id order so opposite transfers cannot deadlock
            members = self.session.query(Member).filter(
                Member.memberID.in_([senderId, recipientId])
            ).order_by(Member.memberID.asc()).populate_existing().with_for_update().all()
            found = {m.memberID for m in members}

            if senderId not in found:
                raise MemberNotFound(f"Member {senderId} not found", {"memberId": senderId})
            if recipientId not in found:
                raise MemberNotFound(f"Recipient {recipientId} not found", {"memberId": recipientId})

            debited = self.session.execute(
                table.update()
                .where(table.c.memberID == senderId)
                .where(table.c.availableBalance >= amount)
                .values(availableBalance=table.c.availableBalance - amount)
            )
            if debited.rowcount != 1:
                raise InsufficientBalance(
                    f"Available balance is below {amount}",
                    {"requested": str(amount)}
                )

            self.session.execute(
                table.update()
                .where(table.c.memberID == recipientId)
                .values(availableBalance=table.c.availableBalance + amount)
            )

            transfer = FundTransfer(
                senderID=senderId,
                recipientID=recipientId,
                amount=amount,
                note=note
            )
            self.session.add(transfer)
            self.session.flush()
            transferId = transfer.transferID
            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        self.session.expire_all()

        await eventBus.emit(MLMEvents.FUNDS_TRANSFERRED, {
            "transferId": transferId,
            "senderId": senderId,
            "recipientId": recipientId,
            "amount": amount,
        })

        logger.info(f"Transfer {transferId}: {amount} from member {senderId} to member {recipientId}")
        return transfer

    async def claimLockedIncome(self, memberId: int) -> Dict[str, Any]:
        """
        Release the whole locked balance into the available balance.

        Requires an active rank and LOCKED_INCOME_CLAIM_DIRECT_REFERRALS
        direct referrals. Claimed income counts toward totalEarnings.

        Raises:
            MemberNotFound, ClaimNotAllowed
        """
        required = claim_direct_referrals()
        table = Member.__table__

        try:
            member = self.session.query(Member).filter_by(
                memberID=memberId
            ).populate_existing().with_for_update().first()

            if not member:
                raise MemberNotFound(f"Member {memberId} not found", {"memberId": memberId})

            claimed = member.lockedBalance
            if claimed <= 0:
                raise ClaimNotAllowed("No locked income available to claim", {"lockedBalance": str(claimed)})

            if not member.isActive:
                raise ClaimNotAllowed("An active rank is required to claim locked income")

            if member.directReferrals < required:
                raise ClaimNotAllowed(
                    f"{required - member.directReferrals} more direct referrals needed to claim",
                    {"directReferrals": member.directReferrals, "required": required}
                )

            # Subtract what was read, so a payout landing meanwhile stays locked
            moved = self.session.execute(
                table.update()
                .where(table.c.memberID == memberId)
                .where(table.c.lockedBalance >= claimed)
                .where(table.c.directReferrals >= required)
                .values(
                    lockedBalance=table.c.lockedBalance - claimed,
                    availableBalance=table.c.availableBalance + claimed,
                    totalEarnings=table.c.totalEarnings + claimed,
                    lastClaimedAt=utcnow()
                )
            )
            if moved.rowcount != 1:
                raise ClaimNotAllowed("Locked balance changed during the claim, please retry")

            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        self.session.expire_all()
        member = self.session.get(Member, memberId)

        await eventBus.emit(MLMEvents.LOCKED_INCOME_CLAIMED, {
            "memberId": memberId,
            "amount": claimed,
            "directReferrals": member.directReferrals,
        })

        logger.info(f"Member {memberId} claimed {claimed} locked income")
        return {
            "memberId": memberId,
            "claimedAmount": claimed,
            "availableBalance": member.availableBalance,
            "lockedBalance": member.lockedBalance,
        }
