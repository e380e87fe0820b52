# models/listeners/balance_listeners.py
"""
Balance Event Listeners - guard Member balance fields.

Architecture:
    Balances move only through atomic SQL updates issued by the services
    (conditional debit, increment on payout, restore on rejection).
    ORM attribute writes on a loaded Member bypass those guarantees.

NOTE: Setting Member.availableBalance = X on a persistent object is FORBIDDEN.
      Initial balances on new (transient) members are allowed.
"""
import logging
import traceback

from sqlalchemy import event, inspect

logger = logging.getLogger(__name__)

BALANCE_FIELDS = ('availableBalance', 'pendingBalance', 'lockedBalance', 'totalEarnings', 'totalWithdrawn')


def register_balance_listeners():
    """
    Reject negative balances before they reach the database.

    Called once during application startup from models/listeners/__init__.py
    """
    from models.member import Member

    def check_non_negative(mapper, connection, target):
        """Raise if any balance field on the flushed Member is negative."""
        for field in BALANCE_FIELDS:
            value = getattr(target, field)
            if value is not None and value < 0:
                raise ValueError(
                    f"Member {target.memberID}: {field} would become negative ({value})"
                )

    event.listen(Member, 'before_insert', check_non_negative)
    event.listen(Member, 'before_update', check_non_negative)


# =========================================================================
# SAFETY: Prevent direct balance modification
# =========================================================================

def register_balance_protection():
    """
    Log warnings when a persistent Member balance is modified directly.
    """
    from models.member import Member

    def make_warning(field):
        def warn_direct_balance_set(target, value, oldvalue, initiator):
            if not inspect(target).persistent:
                return
            if value != oldvalue:
                stack = ''.join(traceback.format_stack()[-5:-1])
                logger.warning(
                    f"DIRECT {field} modification detected! "
                    f"member={target.memberID}, {oldvalue} → {value}\n"
                    f"Stack:\n{stack}"
                )
        return warn_direct_balance_set

    for field in BALANCE_FIELDS:
        event.listen(getattr(Member, field), 'set', make_warning(field))
