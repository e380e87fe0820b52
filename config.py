# config.py
"""
Configuration management for the compensation engine.
Loads from .env, holds the compensation plan and validates critical keys.
"""
import os
import json
import logging
from typing import Any, Dict, List
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


# Default rank catalog (activation amounts in USD)
DEFAULT_RANK_CONFIG: List[Dict[str, Any]] = [
    {"key": "azurite", "displayName": "Azurite", "activationAmount": "5",
     "levelIncome": True, "globalIncome": False},
    {"key": "pearl", "displayName": "Pearl", "activationAmount": "10",
     "levelIncome": True, "globalIncome": True},
    {"key": "ruby", "displayName": "Ruby", "activationAmount": "20",
     "levelIncome": True, "globalIncome": True},
    {"key": "emerald", "displayName": "Emerald", "activationAmount": "40",
     "levelIncome": True, "globalIncome": True},
    {"key": "sapphire", "displayName": "Sapphire", "activationAmount": "80",
     "levelIncome": True, "globalIncome": True},
    {"key": "diamond", "displayName": "Diamond", "activationAmount": "160",
     "levelIncome": True, "globalIncome": True},
    {"key": "doubleDiamond", "displayName": "Double Diamond", "activationAmount": "320",
     "levelIncome": True, "globalIncome": True},
    {"key": "tripleDiamond", "displayName": "Triple Diamond", "activationAmount": "640",
     "levelIncome": True, "globalIncome": True},
    {"key": "crown", "displayName": "Crown", "activationAmount": "1280",
     "levelIncome": True, "globalIncome": True},
    {"key": "royalCrown", "displayName": "Royal Crown", "activationAmount": "2560",
     "levelIncome": True, "globalIncome": True},
]

DEFAULT_WITHDRAWAL_DEDUCTIONS: Dict[str, str] = {
    "bank": "15",
    "usdt_bep20": "5",
    "fund_conversion": "10",
    "p2p": "0",
}


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        url = Config.get(Config.DATABASE_URL)

        # Set dynamic value
        Config.set(Config.GLOBAL_CYCLE_SIZE, 4)
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Rank catalog
    RANK_CONFIG = "RANK_CONFIG"

    # Income plan (percentages, e.g. "50" means 50%)
    REFERRAL_PERCENTAGE = "REFERRAL_PERCENTAGE"
    LEVEL_PERCENTAGES = "LEVEL_PERCENTAGES"
    GLOBAL_PERCENTAGE = "GLOBAL_PERCENTAGE"
    MAX_CHAIN_DEPTH = "MAX_CHAIN_DEPTH"

    # Global cycle
    GLOBAL_CYCLE_SIZE = "GLOBAL_CYCLE_SIZE"
    REENROLL_ON_CYCLE_COMPLETION = "REENROLL_ON_CYCLE_COMPLETION"
    MAX_CYCLES_PER_RUN = "MAX_CYCLES_PER_RUN"
    GLOBAL_INCOME_LOCKED = "GLOBAL_INCOME_LOCKED"
    LOCKED_INCOME_CLAIM_DIRECT_REFERRALS = "LOCKED_INCOME_CLAIM_DIRECT_REFERRALS"

    # Withdrawals
    WITHDRAWAL_MINIMUM = "WITHDRAWAL_MINIMUM"
    WITHDRAWAL_MAXIMUM = "WITHDRAWAL_MAXIMUM"
    WITHDRAWAL_DAILY_LIMIT = "WITHDRAWAL_DAILY_LIMIT"
    WITHDRAWAL_DEDUCTIONS = "WITHDRAWAL_DEDUCTIONS"
    WITHDRAWAL_SINGLE_PENDING = "WITHDRAWAL_SINGLE_PENDING"

    # Wallet
    FUND_REQUEST_CURRENCIES = "FUND_REQUEST_CURRENCIES"

    # Payout queue
    PAYOUT_BATCH_SIZE = "PAYOUT_BATCH_SIZE"
    PAYOUT_MAX_ATTEMPTS = "PAYOUT_MAX_ATTEMPTS"
    PAYOUT_QUEUE_INTERVAL_SECONDS = "PAYOUT_QUEUE_INTERVAL_SECONDS"

    # Concurrency
    CONFLICT_RETRY_ATTEMPTS = "CONFLICT_RETRY_ATTEMPTS"
    CONFLICT_RETRY_BASE_DELAY = "CONFLICT_RETRY_BASE_DELAY"

    # System
    SYSTEM_READY = "SYSTEM_READY"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
        RANK_CONFIG,
        GLOBAL_CYCLE_SIZE,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file and process environment.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///mlm_engine.db"
            )

            # Rank catalog
            rank_config_str = os.getenv("RANK_CONFIG")
            if rank_config_str:
                cls._config[cls.RANK_CONFIG] = json.loads(rank_config_str)
            else:
                cls._config[cls.RANK_CONFIG] = [dict(r) for r in DEFAULT_RANK_CONFIG]

            # Income plan
            cls._config[cls.REFERRAL_PERCENTAGE] = os.getenv("REFERRAL_PERCENTAGE", "50")

            level_str = os.getenv("LEVEL_PERCENTAGES", "5,4,3,1,1,1")
            cls._config[cls.LEVEL_PERCENTAGES] = [
                x.strip() for x in level_str.split(',') if x.strip()
            ]

            cls._config[cls.GLOBAL_PERCENTAGE] = os.getenv("GLOBAL_PERCENTAGE", "10")
            cls._config[cls.MAX_CHAIN_DEPTH] = int(os.getenv("MAX_CHAIN_DEPTH", "50"))

            # Global cycle
            cls._config[cls.GLOBAL_CYCLE_SIZE] = int(os.getenv("GLOBAL_CYCLE_SIZE", "1024"))
            cls._config[cls.REENROLL_ON_CYCLE_COMPLETION] = (
                os.getenv("REENROLL_ON_CYCLE_COMPLETION", "false").lower() in ("1", "true", "yes")
            )
            cls._config[cls.MAX_CYCLES_PER_RUN] = int(os.getenv("MAX_CYCLES_PER_RUN", "10"))
            cls._config[cls.GLOBAL_INCOME_LOCKED] = (
                os.getenv("GLOBAL_INCOME_LOCKED", "false").lower() in ("1", "true", "yes")
            )
            cls._config[cls.LOCKED_INCOME_CLAIM_DIRECT_REFERRALS] = int(
                os.getenv("LOCKED_INCOME_CLAIM_DIRECT_REFERRALS", "2")
            )

            # Withdrawals
            cls._config[cls.WITHDRAWAL_MINIMUM] = os.getenv("WITHDRAWAL_MINIMUM", "10")
            cls._config[cls.WITHDRAWAL_MAXIMUM] = os.getenv("WITHDRAWAL_MAXIMUM", "50000")
            cls._config[cls.WITHDRAWAL_DAILY_LIMIT] = os.getenv("WITHDRAWAL_DAILY_LIMIT", "10000")

            deductions_str = os.getenv("WITHDRAWAL_DEDUCTIONS")
            if deductions_str:
                cls._config[cls.WITHDRAWAL_DEDUCTIONS] = json.loads(deductions_str)
            else:
                cls._config[cls.WITHDRAWAL_DEDUCTIONS] = dict(DEFAULT_WITHDRAWAL_DEDUCTIONS)
            cls._config[cls.WITHDRAWAL_SINGLE_PENDING] = (
                os.getenv("WITHDRAWAL_SINGLE_PENDING", "true").lower() in ("1", "true", "yes")
            )

            # Wallet
            currencies_str = os.getenv("FUND_REQUEST_CURRENCIES", "USDT")
            cls._config[cls.FUND_REQUEST_CURRENCIES] = [
                x.strip().upper() for x in currencies_str.split(',') if x.strip()
            ]

            # Payout queue
            cls._config[cls.PAYOUT_BATCH_SIZE] = int(os.getenv("PAYOUT_BATCH_SIZE", "10"))
            cls._config[cls.PAYOUT_MAX_ATTEMPTS] = int(os.getenv("PAYOUT_MAX_ATTEMPTS", "3"))
            cls._config[cls.PAYOUT_QUEUE_INTERVAL_SECONDS] = int(
                os.getenv("PAYOUT_QUEUE_INTERVAL_SECONDS", "30")
            )

            # Concurrency
            cls._config[cls.CONFLICT_RETRY_ATTEMPTS] = int(os.getenv("CONFLICT_RETRY_ATTEMPTS", "5"))
            cls._config[cls.CONFLICT_RETRY_BASE_DELAY] = float(
                os.getenv("CONFLICT_RETRY_BASE_DELAY", "0.05")
            )

            cls._config[cls.SYSTEM_READY] = False

        except (ValueError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to parse configuration: {e}")

        cls._initialized = True
        logger.info(f"Configuration loaded: {len(cls._config)} keys")

    @classmethod
    def validate(cls) -> None:
        """
        Validate critical keys and plan consistency.

        Raises:
            ConfigurationError: If a critical key is missing or the plan is inconsistent
        """
        missing = [key for key in cls.CRITICAL_KEYS if not cls._config.get(key)]
        if missing:
            raise ConfigurationError(f"Missing critical configuration keys: {', '.join(missing)}")

        cycle_size = cls._config[cls.GLOBAL_CYCLE_SIZE]
        if cycle_size < 2 or cycle_size & (cycle_size - 1):
            raise ConfigurationError(f"GLOBAL_CYCLE_SIZE must be a power of two, got {cycle_size}")

        from decimal import Decimal, InvalidOperation
        try:
            total = Decimal(str(cls._config[cls.REFERRAL_PERCENTAGE]))
            total += sum(Decimal(str(p)) for p in cls._config[cls.LEVEL_PERCENTAGES])
            total += Decimal(str(cls._config[cls.GLOBAL_PERCENTAGE]))
        except InvalidOperation as e:
            raise ConfigurationError(f"Invalid income percentage: {e}")

        if total > 100:
            raise ConfigurationError(f"Income percentages add up to {total}%, more than 100%")

        logger.info("✓ Configuration validated")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """Set configuration value (dynamic)."""
        cls._config[key] = value
        logger.debug(f"Config updated: {key}")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized
