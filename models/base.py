# models/base.py
"""
Base model, money column type and mixins for all database tables.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, BigInteger
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from mlm_engine.utils.money import to_cents, from_cents

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _get_current_time():
    return utcnow()


class Money(TypeDecorator):
    """
    Currency column stored as integer cents.

    Python side sees two-place Decimals; SQL side sees BIGINT, so sums and
    conditional updates stay exact on every backend.
    """
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_cents(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_cents(value)


class AuditMixin:
    createdAt = Column(DateTime, default=_get_current_time, nullable=False)
    updatedAt = Column(DateTime, default=_get_current_time, onupdate=_get_current_time)
