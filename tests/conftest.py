# tests/conftest.py
"""
Pytest configuration and shared fixtures for the compensation engine tests.

Every test gets its own SQLite file, so tests never share state.

Run:
    pytest tests/ -v
"""
from decimal import Decimal

import pytest

from config import Config
from core.db import get_session, reset_engine, setup_database
from models import Member
from models.listeners import register_all_listeners
from mlm_engine.config.ranks import invalidate_rank_cache
from mlm_engine.events.event_bus import eventBus

# =============================================================================
# INITIALIZE CONFIG
# =============================================================================

Config.initialize_from_env()

# Keys a test may change; restored after every test
_BASELINE = dict(Config._config)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_listeners():
    """Register listeners once at test session start."""
    register_all_listeners()


@pytest.fixture(autouse=True)
def database(tmp_path):
    """Fresh database file and default plan for each test."""
    Config._config.clear()
    Config._config.update(_BASELINE)
    Config.set(Config.DATABASE_URL, f"sqlite:///{tmp_path / 'mlm_test.db'}")
    Config.set(Config.CONFLICT_RETRY_BASE_DELAY, 0.01)
    invalidate_rank_cache()

    reset_engine()
    setup_database()

    yield

    reset_engine()
    invalidate_rank_cache()
    eventBus.clear()


@pytest.fixture
def session(database):
    """Create database session for each test."""
    session = get_session()
    yield session
    session.close()


# =============================================================================
# MEMBER FIXTURES
# =============================================================================

@pytest.fixture
def make_member(session):
    """
    Factory: create a member below a sponsor.

    Usage:
        member = make_member(sponsor=root, rank="azurite", balance="100")
    """

    def _make(sponsor=None, rank="inactive", balance="0", name=None):
        member = Member(
            sponsorID=sponsor.memberID if sponsor is not None else None,
            displayName=name,
            rank=rank,
            availableBalance=Decimal(balance)
        )
        session.add(member)
        session.commit()
        return member

    return _make


@pytest.fixture
def chain(make_member):
    """
    Active sponsor chain of 7 members; chain[0] is the top, chain[-1] the bottom.
    """
    members = []
    sponsor = None
    for i in range(7):
        sponsor = make_member(sponsor=sponsor, rank="azurite", name=f"chain-{i}")
        members.append(sponsor)
    return members


# =============================================================================
# HELPERS
# =============================================================================

@pytest.fixture
def small_cycles():
    """Capacity-4 cycles: two payout levels."""
    Config.set(Config.GLOBAL_CYCLE_SIZE, 4)


@pytest.fixture
def global_first_tier():
    """Catalog whose first tier also enrolls in the global cycle."""
    from mlm_engine.config.ranks import update_rank_catalog
    update_rank_catalog([
        {"key": "pearl", "activationAmount": "10", "levelIncome": True, "globalIncome": True},
        {"key": "ruby", "activationAmount": "20", "levelIncome": True, "globalIncome": True},
    ])


@pytest.fixture
def tx_hash():
    """Factory: deterministic, well-formed BEP20 transaction hash."""

    def _hash(n: int) -> str:
        return "0x" + format(n, "064x")

    return _hash


@pytest.fixture
def wallet():
    return "0x" + "ab" * 20
