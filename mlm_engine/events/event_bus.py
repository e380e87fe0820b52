# mlm_engine/events/event_bus.py
"""
In-process event bus for state-transition events.

Emission is best effort: a failing handler is logged and never reaches the
code that emitted the event.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]


class MLMEvents:
    """Event names emitted by the engine."""
    ACTIVATION_COMPLETED = "activation.completed"
    ACTIVATION_REJECTED = "activation.rejected"
    INCOME_CREATED = "income.created"
    CYCLE_COMPLETED = "cycle.completed"
    PAYOUT_APPLIED = "payout.applied"
    WITHDRAWAL_REQUESTED = "withdrawal.requested"
    WITHDRAWAL_RESOLVED = "withdrawal.resolved"
    FUNDS_TRANSFERRED = "funds.transferred"
    LOCKED_INCOME_CLAIMED = "locked_income.claimed"
    FUND_REQUEST_CREATED = "fund_request.created"
    FUND_REQUEST_RESOLVED = "fund_request.resolved"


class EventBus:
    """Publish/subscribe dispatcher; handlers may be sync or async."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, eventName: str, handler: Handler) -> None:
        if handler not in self._handlers[eventName]:
            self._handlers[eventName].append(handler)

    def unsubscribe(self, eventName: str, handler: Handler) -> None:
        if handler in self._handlers[eventName]:
            self._handlers[eventName].remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    async def emit(self, eventName: str, data: Dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber.

        Returns:
            Number of handlers that ran without error
        """
        delivered = 0
        payload = dict(data)
        payload.setdefault("event", eventName)

        for handler in list(self._handlers.get(eventName, [])):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Event handler {getattr(handler, '__name__', handler)} failed for {eventName}: {e}")

        return delivered

    async def emit_all(self, events: List[tuple]) -> None:
        """Emit a list of (eventName, data) pairs in order."""
        for eventName, data in events:
            await self.emit(eventName, data)


eventBus = EventBus()
