# mlm_engine/events/handlers.py
"""
Event handlers for the audit log.
One structured JSON line per state transition.
"""
import json
import logging
from decimal import Decimal
from datetime import datetime
from typing import Any, Dict

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("mlm_engine.audit")


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def handle_audit_event(data: Dict[str, Any]):
    """
    Write an event to the audit logger.

    Args:
        data: Event payload with an 'event' key
    """
    audit_logger.info(json.dumps(data, default=_json_default, sort_keys=True))
