# mlm_engine/services/member_service.py
"""
Member registry - creating members under a sponsor and reading balances.
"""
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
import logging

from models.member import Member
from mlm_engine.config.ranks import INACTIVE
from mlm_engine.errors import MemberNotFound, SponsorNotFound

logger = logging.getLogger(__name__)


class MemberService:
    """Service for member registration and lookups."""

    def __init__(self, session: Session):
        self.session = session

    async def registerMember(
            self,
            sponsorId: Optional[int] = None,
            displayName: Optional[str] = None
    ) -> Member:
        """
        Create an Inactive member below an existing sponsor.

        The sponsor must exist first, so the sponsor graph can never
        contain a cycle.
        """
        try:
            if sponsorId is not None and self.session.get(Member, sponsorId) is None:
                raise SponsorNotFound(f"Sponsor {sponsorId} not found", {"sponsorId": sponsorId})

            member = Member(
                sponsorID=sponsorId,
                displayName=displayName,
                rank=INACTIVE
            )
            self.session.add(member)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Registered member {member.memberID} under sponsor {sponsorId}")
        return member

    def getMember(self, memberId: int) -> Member:
        member = self.session.get(Member, memberId)
        if member is None:
            raise MemberNotFound(f"Member {memberId} not found", {"memberId": memberId})
        return member

    def getMemberSummary(self, memberId: int) -> Dict:
        member = self.getMember(memberId)
        return {
            "memberId": member.memberID,
            "sponsorId": member.sponsorID,
            "rank": member.rank,
            "isActive": member.isActive,
            "availableBalance": member.availableBalance,
            "pendingBalance": member.pendingBalance,
            "lockedBalance": member.lockedBalance,
            "totalEarnings": member.totalEarnings,
            "totalWithdrawn": member.totalWithdrawn or Decimal("0.00"),
            "directReferrals": member.directReferrals,
            "teamSize": member.teamSize,
            "matrixPosition": member.matrixPosition,
            "matrixCycleId": member.matrixCycleID,
            "activatedAt": member.activatedAt,
        }
