# mlm_engine/services/income_service.py
"""
Income distribution engine - referral, level and global income for one
completed activation.

Runs inside the transaction that completes the activation, so other units of
work see either the whole fan-out or none of it. The incomeDistributed flag
commits together with the entries; a second distribute() for the same
transaction is a no-op, and the unique distribution key rejects any entry
written twice.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple
from sqlalchemy.orm import Session
import logging

from models.member import Member
from models.activation import ActivationTransaction, ActivationStatus, ActivationType
from models.income import IncomeEntry, IncomeKind, IncomeStatus
from models.platform_ledger import PlatformLedgerEntry, PlatformLedgerKind
from mlm_engine.config.plan import (
    referral_percentage,
    level_percentages,
    global_percentage,
)
from mlm_engine.config.ranks import get_rank
from mlm_engine.errors import InvalidStateTransition
from mlm_engine.events.event_bus import MLMEvents
from mlm_engine.services.payout_service import PayoutService
from mlm_engine.services.global_cycle_service import GlobalCycleService
from mlm_engine.utils.chain_walker import ChainWalker
from mlm_engine.utils.money import ZERO, percent_of

logger = logging.getLogger(__name__)


class IncomeDistributionService:
    """Service for fanning out income from a completed activation."""

    def __init__(self, session: Session):
        self.session = session
        self.payoutService = PayoutService(session)
        self.globalCycleService = GlobalCycleService(session)
        self.events: List[Tuple[str, Dict]] = []

    async def distribute(self, transaction: ActivationTransaction) -> Dict:
        """
        Create all income entries for a completed activation.

        Order: referral, level 1..N, global pool reservation. Every existing
        ancestor is paid whatever their own rank. Whatever the plan allots
        but no entry receives (missing sponsor, short chain, rounding) is
        written to the platform ledger, so

            entries + reserve + retained == amount * plan percentage

        holds for every activation.

        Returns:
            Summary dict with entries, totals and the cycle placement
        """
        if transaction.status != ActivationStatus.COMPLETED.value:
            raise InvalidStateTransition(
                f"Transaction {transaction.transactionID} is {transaction.status}, not completed"
            )

        if transaction.incomeDistributed:
            logger.warning(f"Income for transaction {transaction.transactionID} already distributed")
            return {"success": True, "alreadyDistributed": True, "entries": []}

        member = self.session.get(Member, transaction.memberID)
        tier = get_rank(transaction.targetRank)
        amount = transaction.amount

        results = {
            "success": True,
            "transaction": transaction.transactionID,
            "entries": [],
            "totalDistributed": ZERO,
            "globalReserve": ZERO,
            "retained": ZERO,
            "cycle": None
        }
        planned = ZERO

        # ═══════════════════════════════════════════════════════════
        # STEP 1: Referral income (direct sponsor)
        # ═══════════════════════════════════════════════════════════
        referralPct = referral_percentage()
        planned += referralPct
        referralShare = percent_of(amount, referralPct)
        kind = IncomeKind.RE_TOPUP if transaction.txType == ActivationType.RETOPUP.value else IncomeKind.REFERRAL

        if member.sponsorID is not None:
            entry = await self._createEntry(transaction, kind, member.sponsorID, None, referralShare)
            if entry:
                results["entries"].append(entry)
                results["totalDistributed"] += referralShare
        else:
            results["retained"] += self._retain(
                transaction, PlatformLedgerKind.UNALLOCATED_REFERRAL, referralShare, "no sponsor"
            )

        # ═══════════════════════════════════════════════════════════
        # STEP 2: Level income (walk upline, hard level cap)
        # ═══════════════════════════════════════════════════════════
        if tier.levelIncomeEnabled:
            levelPcts = level_percentages()
            planned += sum(levelPcts)
            reached: Set[int] = set()

            # walk_upline callbacks are sync; collect first, then write
            ancestors: List[Tuple[Member, int]] = []

            def collect(ancestor: Member, level: int) -> bool:
                ancestors.append((ancestor, level))
                return True

            ChainWalker(self.session).walk_upline(member, collect, max_depth=len(levelPcts))

            for ancestor, level in ancestors:
                reached.add(level)
                share = percent_of(amount, levelPcts[level - 1])

                entry = await self._createEntry(transaction, IncomeKind.LEVEL, ancestor.memberID, level, share)
                if entry:
                    results["entries"].append(entry)
                    results["totalDistributed"] += share

            # Chain ended early: no substitute beneficiary, the platform keeps it
            missing = sum(
                (percent_of(amount, levelPcts[level - 1])
                 for level in range(1, len(levelPcts) + 1) if level not in reached),
                ZERO
            )
            if missing > 0:
                results["retained"] += self._retain(
                    transaction, PlatformLedgerKind.UNALLOCATED_LEVEL, missing,
                    f"sponsor chain ended after {len(reached)} levels"
                )

        # ═══════════════════════════════════════════════════════════
        # STEP 3: Global pool reservation (matrix enrollment)
        # ═══════════════════════════════════════════════════════════
        if tier.globalIncomeEnabled:
            globalPct = global_percentage()
            planned += globalPct
            reserve = percent_of(amount, globalPct)

            placement = await self.globalCycleService.enroll(
                member.memberID, tier.key, reserve, transaction.transactionID
            )
            results["globalReserve"] = reserve
            results["cycle"] = placement
            self.events.extend(self.globalCycleService.events)
            self.globalCycleService.events = []

        # ═══════════════════════════════════════════════════════════
        # STEP 4: Rounding remainder
        # ═══════════════════════════════════════════════════════════
        expected = percent_of(amount, planned)
        remainder = expected - results["totalDistributed"] - results["globalReserve"] - results["retained"]
        if remainder > 0:
            results["retained"] += self._retain(
                transaction, PlatformLedgerKind.ROUNDING_REMAINDER, remainder, "percentage rounding"
            )

        transaction.incomeDistributed = True
        self.session.flush()

        logger.info(
            f"Distributed income for transaction {transaction.transactionID}: "
            f"{len(results['entries'])} entries, total {results['totalDistributed']}, "
            f"global reserve {results['globalReserve']}, retained {results['retained']}"
        )

        return results

    # ============================================================
    # INTERNAL
    # ============================================================

    @staticmethod
    def _distributionKey(transactionId: int, kind: IncomeKind, level: Optional[int]) -> str:
        if level is None:
            return f"tx:{transactionId}:{kind.value}"
        return f"tx:{transactionId}:{kind.value}:{level}"

    async def _createEntry(
            self,
            transaction: ActivationTransaction,
            kind: IncomeKind,
            beneficiaryId: int,
            level: Optional[int],
            amount: Decimal
    ) -> Optional[Dict]:
        """Create an IncomeEntry plus its payout item; None for a zero share."""
        if amount <= 0:
            return None

        key = self._distributionKey(transaction.transactionID, kind, level)
        entry = IncomeEntry(
            beneficiaryID=beneficiaryId,
            sourceMemberID=transaction.memberID,
            kind=kind.value,
            level=level,
            amount=amount,
            sourceTransactionID=transaction.transactionID,
            status=IncomeStatus.PENDING.value,
            distributionKey=key
        )
        self.session.add(entry)
        self.session.flush()

        await self.payoutService.enqueue(beneficiaryId, amount, incomeEntryId=entry.entryID)

        self.events.append((MLMEvents.INCOME_CREATED, {
            "entryId": entry.entryID,
            "kind": kind.value,
            "level": level,
            "beneficiaryId": beneficiaryId,
            "sourceMemberId": transaction.memberID,
            "transactionId": transaction.transactionID,
            "amount": amount,
        }))

        return {
            "entryId": entry.entryID,
            "kind": kind.value,
            "level": level,
            "beneficiaryId": beneficiaryId,
            "amount": amount,
        }

    def _retain(
            self,
            transaction: ActivationTransaction,
            kind: PlatformLedgerKind,
            amount: Decimal,
            note: str
    ) -> Decimal:
        if amount <= 0:
            return ZERO

        self.session.add(PlatformLedgerEntry(
            kind=kind.value,
            amount=amount,
            sourceTransactionID=transaction.transactionID,
            note=note
        ))
        return amount
