"""
Lifecycle notifier - the seam between the host persistence layer and livecount.

The host supplies an adapter that turns its own after-commit hooks into
publish(...) calls; the dispatcher subscribes to the notifier. Delivery is
at-least-once and strictly after commit; there is no deduplication here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional

from prometheus_client import Counter

from livecount.definitions import Lifecycle
from livecount.events import LifecycleEvent

logger = logging.getLogger(__name__)

# Prometheus metrics
events_published_counter = Counter(
    'livecount_lifecycle_events_published_total',
    'Total lifecycle events published by the host',
    ['entity_type', 'lifecycle']
)

Handler = Callable[[LifecycleEvent], Any]


class LifecycleNotifier(ABC):
    """Source of committed entity lifecycle transitions"""

    @abstractmethod
    def subscribe(self, handler: Handler) -> None:
        """Register a handler called once per committed transition"""


class LifecycleBus(LifecycleNotifier):
    """
    In-process notifier

    Usage:
        bus = LifecycleBus()
        counters.subscribe(bus)

        # in the host's after-commit hook
        bus.publish("User", "create", user.attributes)
    """

    def __init__(self):
        self._handlers: List[Handler] = []
        self._entity_handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, handler: Handler, entity_type: Optional[str] = None) -> None:
        """Register handler for all entity types, or only entity_type"""
        if entity_type is None:
            self._handlers.append(handler)
        else:
            self._entity_handlers.setdefault(entity_type, []).append(handler)
        logger.info(f"Subscribed handler to {entity_type or 'all entity types'}")

    def publish(
        self,
        entity_type: str,
        lifecycle: Any,
        attributes: Mapping[str, Any],
        changes: Optional[Mapping[str, Any]] = None
    ) -> LifecycleEvent:
        """
        Publish one committed transition to every matching handler.

        Handlers run synchronously in subscription order; an exception from
        a handler propagates to the caller (the host's commit hook).

        Raises:
            pydantic.ValidationError: If the snapshot lacks id or created_at
        """
        event = LifecycleEvent(
            entity_type=entity_type,
            lifecycle=Lifecycle.coerce(lifecycle),
            attributes=dict(attributes),
            changes=dict(changes or {}),
        )
        self.dispatch(event)
        return event

    def dispatch(self, event: LifecycleEvent) -> None:
        handlers = self._handlers + self._entity_handlers.get(event.entity_type, [])
        if not handlers:
            logger.debug(f"No handlers registered for {event.entity_type}")
            return

        events_published_counter.labels(
            entity_type=event.entity_type,
            lifecycle=event.lifecycle.value
        ).inc()

        for handler in handlers:
            handler(event)
