# tests/test_member_service.py
"""
Tests for member registration and lookups.
"""
from decimal import Decimal

import pytest

from mlm_engine.errors import MemberNotFound, SponsorNotFound
from mlm_engine.services.member_service import MemberService


class TestRegisterMember:

    async def test_registers_inactive_below_sponsor(self, session, make_member):
        sponsor = make_member(rank="azurite")

        member = await MemberService(session).registerMember(sponsor.memberID, "Alice")

        assert member.rank == "inactive"
        assert member.isActive is False
        assert member.sponsorID == sponsor.memberID
        assert member.availableBalance == Decimal("0.00")

    async def test_unknown_sponsor(self, session):
        with pytest.raises(SponsorNotFound):
            await MemberService(session).registerMember(77)

    async def test_root_member(self, session):
        member = await MemberService(session).registerMember()
        assert member.sponsorID is None


class TestLookups:

    def test_summary(self, session, make_member):
        member = make_member(rank="azurite", balance="12.34")

        summary = MemberService(session).getMemberSummary(member.memberID)

        assert summary["isActive"] is True
        assert summary["availableBalance"] == Decimal("12.34")
        assert summary["totalWithdrawn"] == Decimal("0.00")
        assert summary["lockedBalance"] == Decimal("0.00")

    def test_unknown_member(self, session):
        with pytest.raises(MemberNotFound):
            MemberService(session).getMember(1)
