# mlm_engine/events/setup.py
"""
Setup event handlers.
Register all event handlers with the event bus.
"""
import logging

from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.events.handlers import handle_audit_event

logger = logging.getLogger(__name__)

AUDITED_EVENTS = [
    MLMEvents.ACTIVATION_COMPLETED,
    MLMEvents.ACTIVATION_REJECTED,
    MLMEvents.INCOME_CREATED,
    MLMEvents.CYCLE_COMPLETED,
    MLMEvents.PAYOUT_APPLIED,
    MLMEvents.WITHDRAWAL_REQUESTED,
    MLMEvents.WITHDRAWAL_RESOLVED,
    MLMEvents.FUNDS_TRANSFERRED,
    MLMEvents.LOCKED_INCOME_CLAIMED,
    MLMEvents.FUND_REQUEST_CREATED,
    MLMEvents.FUND_REQUEST_RESOLVED,
]


def setup_mlm_event_handlers():
    """
    Register all event handlers with the event bus.

    This function should be called during engine initialization.
    """
    logger.info("Setting up event handlers...")

    for eventName in AUDITED_EVENTS:
        eventBus.subscribe(eventName, handle_audit_event)
        logger.debug(f"Registered audit handler for {eventName}")

    logger.info("Event handlers registered successfully")


def teardown_mlm_event_handlers():
    """
    Unregister all event handlers.
    Useful for testing or shutdown.
    """
    logger.info("Tearing down event handlers...")

    for eventName in AUDITED_EVENTS:
        eventBus.unsubscribe(eventName, handle_audit_event)

    logger.info("Event handlers unregistered")
