"""
Database models for the compensation engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin, Money, utcnow

# Core models
from models.member import Member
from models.activation import ActivationTransaction, ActivationStatus, ActivationType
from models.income import IncomeEntry, IncomeKind, IncomeStatus
from models.global_cycle import GlobalCycle, CyclePosition, CycleStatus
from models.payout_queue import PayoutQueueItem, PayoutStatus
from models.withdrawal import Withdrawal, WithdrawalStatus
from models.platform_ledger import PlatformLedgerEntry, PlatformLedgerKind
from models.fund_transfer import FundTransfer
from models.fund_request import FundRequest, FundRequestStatus

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',
    'Money',
    'utcnow',

    # Core
    'Member',
    'ActivationTransaction',
    'ActivationStatus',
    'ActivationType',
    'IncomeEntry',
    'IncomeKind',
    'IncomeStatus',
    'GlobalCycle',
    'CyclePosition',
    'CycleStatus',
    'PayoutQueueItem',
    'PayoutStatus',
    'Withdrawal',
    'WithdrawalStatus',
    'PlatformLedgerEntry',
    'PlatformLedgerKind',
    'FundTransfer',
    'FundRequest',
    'FundRequestStatus',

    # Listeners
    'register_all_listeners',
]
