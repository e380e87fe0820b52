"""
Compensation plan accessors.
Percentages are stored as percent values ("50" means 50%).
"""
from decimal import Decimal
from typing import Dict, List

from config import Config
from mlm_engine.utils.money import to_money


def referral_percentage() -> Decimal:
    return Decimal(str(Config.get(Config.REFERRAL_PERCENTAGE, "50")))


def level_percentages() -> List[Decimal]:
    """Level income percentages, index 0 is level 1."""
    raw = Config.get(Config.LEVEL_PERCENTAGES, ["5", "4", "3", "1", "1", "1"])
    return [Decimal(str(p)) for p in raw]


def global_percentage() -> Decimal:
    return Decimal(str(Config.get(Config.GLOBAL_PERCENTAGE, "10")))


def max_chain_depth() -> int:
    return int(Config.get(Config.MAX_CHAIN_DEPTH, 50))


def cycle_size() -> int:
    return int(Config.get(Config.GLOBAL_CYCLE_SIZE, 1024))


def reenroll_on_completion() -> bool:
    return bool(Config.get(Config.REENROLL_ON_CYCLE_COMPLETION, False))


def max_cycles_per_run() -> int:
    return int(Config.get(Config.MAX_CYCLES_PER_RUN, 10))


def global_income_locked() -> bool:
    """Global payouts go to lockedBalance until claimed."""
    return bool(Config.get(Config.GLOBAL_INCOME_LOCKED, False))


def claim_direct_referrals() -> int:
    return int(Config.get(Config.LOCKED_INCOME_CLAIM_DIRECT_REFERRALS, 2))


def withdrawal_minimum() -> Decimal:
    return to_money(str(Config.get(Config.WITHDRAWAL_MINIMUM, "10")))


def withdrawal_maximum() -> Decimal:
    return to_money(str(Config.get(Config.WITHDRAWAL_MAXIMUM, "50000")))


def withdrawal_daily_limit() -> Decimal:
    return to_money(str(Config.get(Config.WITHDRAWAL_DAILY_LIMIT, "10000")))


def withdrawal_deductions() -> Dict[str, Decimal]:
    raw = Config.get(Config.WITHDRAWAL_DEDUCTIONS) or {}
    return {method: Decimal(str(pct)) for method, pct in raw.items()}


def withdrawal_single_pending() -> bool:
    return bool(Config.get(Config.WITHDRAWAL_SINGLE_PENDING, True))


def fund_request_currencies() -> List[str]:
    return list(Config.get(Config.FUND_REQUEST_CURRENCIES) or ["USDT"])


def payout_batch_size() -> int:
    return int(Config.get(Config.PAYOUT_BATCH_SIZE, 10))


def payout_max_attempts() -> int:
    return int(Config.get(Config.PAYOUT_MAX_ATTEMPTS, 3))
