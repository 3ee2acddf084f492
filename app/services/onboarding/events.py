"""
In-process onboarding events for the routing layer.
"""

from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List

import structlog

logger = structlog.get_logger(__name__)

ONBOARDING_SUBMITTED = "onboarding_submitted"

EventHandler = Callable[[Dict[str, Any]], None]


class OnboardingEvents:
    def __init__(self):
        self._handlers: DefaultDict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return unsubscribe

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("onboarding_event_emitted", onboarding_event=event, **payload)
        for handler in list(self._handlers[event]):
            try:
                handler(payload)
            except Exception as e:
                # A broken subscriber must not undo a committed submission
                logger.error(
                    "onboarding_event_handler_failed",
                    onboarding_event=event,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )


onboarding_events = OnboardingEvents()
