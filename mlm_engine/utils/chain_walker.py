# mlm_engine/utils/chain_walker.py
"""
Safe sponsor chain walking utilities.
Prevents infinite loops and bounds traversal depth.
"""
from typing import Callable, List
from sqlalchemy.orm import Session
import logging

from models.member import Member
from mlm_engine.config.plan import max_chain_depth

logger = logging.getLogger(__name__)


class ChainWalker:
    """
    Walks the sponsor chain upward through parent pointers.
    Explicit loop with a hard level cap and cycle detection.
    """

    def __init__(self, session: Session):
        self.session = session

    def walk_upline(
            self,
            start_member: Member,
            callback: Callable[[Member, int], bool],
            max_depth: int = None
    ) -> int:
        """
        Walk up the sponsor chain, calling callback for each ancestor.

        Args:
            start_member: Starting member (not passed to callback)
            callback: Function(ancestor, level) -> continue_walking (bool)
            max_depth: Maximum number of levels to visit

        Returns:
            Number of ancestors processed

        Example:
            def collect(ancestor, level):
                print(f"Level {level}: {ancestor.memberID}")
                return True  # Continue walking

            walker.walk_upline(member, collect, max_depth=6)
        """
        if max_depth is None:
            max_depth = max_chain_depth()

        current = start_member
        level = 1
        processed = 0
        visited = {start_member.memberID}

        while current.sponsorID is not None and level <= max_depth:
            if current.sponsorID in visited:
                logger.error(f"Cycle detected at member {current.sponsorID}")
                break

            sponsor = self.session.get(Member, current.sponsorID)
            if sponsor is None:
                logger.warning(
                    f"Sponsor not found: memberID={current.sponsorID} "
                    f"for member {current.memberID}"
                )
                break

            visited.add(sponsor.memberID)

            should_continue = callback(sponsor, level)
            processed += 1

            if not should_continue:
                break

            current = sponsor
            level += 1

        return processed

    def get_upline_chain(self, member: Member, max_depth: int = None) -> List[Member]:
        """
        Get ancestors from the direct sponsor upward.

        Args:
            member: Starting member
            max_depth: Maximum depth

        Returns:
            List of members, index 0 is level 1
        """
        chain = []

        def collect(ancestor, level):
            chain.append(ancestor)
            return True

        self.walk_upline(member, collect, max_depth)
        return chain
