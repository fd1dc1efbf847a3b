"""
Event dispatcher

Receives committed lifecycle transitions and turns them into counter work:

1. resolve the counters bound to (entity_type, lifecycle)
2. gate each on its predicate, evaluated against a fresh context
3. destroy: decrement inline (increment counters with decrement_on_destroy);
   the entity may already be gone from storage, so hooks must only read
   the snapshot
4. create/update: run inline, or hand a DeferredJob to the deferrer
5. at execution time, gate on the async predicate, then act

Predicate and storage errors propagate to the caller; nothing is retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from prometheus_client import Counter

from livecount.config import EngineConfig
from livecount.context import ExecutionContext
from livecount.definitions import CounterRegistry, CounterSpec, EventBinding, Lifecycle
from livecount.events import DeferredJob, LifecycleEvent
from livecount.keys import KeyBuilder
from livecount.lifecycle import LifecycleNotifier
from livecount.uniqueness import UniquenessTracker

logger = logging.getLogger(__name__)

# Prometheus metrics
events_counter = Counter(
    'livecount_events_total',
    'Total counter dispatch outcomes',
    ['counter', 'lifecycle', 'outcome']
)

SKIPPED = "skipped"
IGNORED = "ignored"
DECREMENTED = "decremented"
EXECUTED = "executed"
DEFERRED = "deferred"
REJECTED = "rejected"


@dataclass
class DispatchResult:
    """Outcome of one counter for one event"""
    counter: str
    outcome: str
    action: Optional[str] = None


class EventDispatcher:
    """Routes lifecycle events to counters"""

    def __init__(
        self,
        registry: CounterRegistry,
        config: EngineConfig,
        keys: Optional[KeyBuilder] = None,
        tracker: Optional[UniquenessTracker] = None
    ):
        self.registry = registry
        self.config = config
        self.keys = keys or KeyBuilder()
        self.tracker = tracker or UniquenessTracker(config.storage, self.keys)

    def subscribe(self, notifier: LifecycleNotifier) -> None:
        notifier.subscribe(self.handle)

    def context_for(self, spec: CounterSpec, event: LifecycleEvent) -> ExecutionContext:
        return ExecutionContext(
            spec=spec,
            entity_type=event.entity_type,
            lifecycle=event.lifecycle,
            attributes=event.attributes,
            changes=event.changes,
            config=self.config,
            keys=self.keys,
            tracker=self.tracker,
        )

    def notify(
        self,
        entity_type: str,
        lifecycle: Any,
        attributes: Mapping[str, Any],
        changes: Optional[Mapping[str, Any]] = None
    ) -> List[DispatchResult]:
        """
        Handle one committed lifecycle transition.

        Args:
            entity_type: Entity type name (e.g. "User")
            lifecycle: Lifecycle or "create"/"update"/"destroy"
            attributes: Flat snapshot including id and created_at
            changes: What changed (update events)

        Returns:
            One DispatchResult per bound counter

        Raises:
            pydantic.ValidationError: If the snapshot is incomplete
            PredicateError: If a hook fails
            StorageError: If the store fails during inline execution
        """
        event = LifecycleEvent(
            entity_type=entity_type,
            lifecycle=Lifecycle.coerce(lifecycle),
            attributes=dict(attributes),
            changes=dict(changes or {}),
        )
        return self.handle(event)

    def handle(self, event: LifecycleEvent) -> List[DispatchResult]:
        binding = EventBinding(event.entity_type, event.lifecycle)
        specs = self.registry.counters_for(binding)
        if not specs:
            logger.debug(f"No counters bound to {event.entity_type}.{event.lifecycle.value}")
            return []

        results = []
        for spec in specs:
            result = self._dispatch(spec, event)
            events_counter.labels(
                counter=spec.name,
                lifecycle=event.lifecycle.value,
                outcome=result.outcome
            ).inc()
            results.append(result)
        return results

    def _dispatch(self, spec: CounterSpec, event: LifecycleEvent) -> DispatchResult:
        context = self.context_for(spec, event)

        if not context.should_run():
            return DispatchResult(spec.name, SKIPPED)

        if event.lifecycle is Lifecycle.DESTROY:
            if spec.is_aggregate or not spec.decrement_on_destroy:
                return DispatchResult(spec.name, IGNORED)
            context.decrement()
            return DispatchResult(spec.name, DECREMENTED, "decrement")

        if self.config.deferrer is not None and spec.run_async:
            job = DeferredJob(counter=spec.name, event=event)
            self.config.deferrer.submit(job, self.perform)
            logger.info(
                f"Deferred '{spec.name}' for {event.entity_type}#{event.attributes['id']}"
            )
            return DispatchResult(spec.name, DEFERRED)

        action = context.run()
        if action is None:
            return DispatchResult(spec.name, REJECTED)
        return DispatchResult(spec.name, EXECUTED, action)

    def perform(self, payload: Any) -> Optional[str]:
        """
        Worker-side entrypoint for a deferred job.

        Args:
            payload: DeferredJob, or its dict / JSON form

        Returns:
            The action performed, or None if the async predicate said no

        Raises:
            ConfigurationError: If the counter is no longer registered
        """
        job = DeferredJob.load(payload)
        spec = self.registry.get(job.counter)
        action = self.context_for(spec, job.event).run()

        events_counter.labels(
            counter=spec.name,
            lifecycle=job.event.lifecycle.value,
            outcome=EXECUTED if action else REJECTED
        ).inc()
        return action
