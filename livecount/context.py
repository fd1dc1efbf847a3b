"""
Execution context and fan-out write algorithm.

One ExecutionContext is built per triggered (counter, event) pair, used once
and discarded. It carries the attribute snapshot, lazily resolves the subject
and scopes, and performs exactly one action over every fan-out key:

    months  = [event month, all-time]
    scopes  = [resolved scopes..., global]
    keys    = months x scopes

- increment: SADD token (+ entity id into the tracking set when deduplicating)
- decrement: SREM token (only once the tracking set is empty when deduplicating)
- append:    RPUSH value

There is no transaction across keys: a failure mid fan-out leaves the event
partially applied.
"""

import logging
from typing import Any, List, Mapping, Optional

from prometheus_client import Counter

from livecount.config import EngineConfig
from livecount.definitions import CounterSpec, Lifecycle
from livecount.exceptions import ConfigurationError, PredicateError
from livecount.keys import CounterKey, KeyBuilder, ScopeHandle
from livecount.months import month_label
from livecount.uniqueness import UniquenessTracker

logger = logging.getLogger(__name__)

# Prometheus metrics
counter_writes = Counter(
    'livecount_writes_total',
    'Total counter keys written',
    ['counter', 'action']
)

_UNSET = object()


class ExecutionContext:
    """
    Context handed to every predicate and extractor of a counter.

    Hooks read the snapshot through ctx["field"], ctx.get("field"),
    ctx.changes, ctx.subject and ctx.scopes.
    """

    def __init__(
        self,
        spec: CounterSpec,
        entity_type: str,
        lifecycle: Lifecycle,
        attributes: Mapping[str, Any],
        config: EngineConfig,
        changes: Optional[Mapping[str, Any]] = None,
        keys: Optional[KeyBuilder] = None,
        tracker: Optional[UniquenessTracker] = None
    ):
        self.spec = spec
        self.entity_type = entity_type
        self.lifecycle = lifecycle
        self.attributes = dict(attributes)
        self.changes = dict(changes or {})
        self.config = config
        self.keys = keys or KeyBuilder()
        self.tracker = tracker or UniquenessTracker(config.storage, self.keys)

        self._subject = _UNSET
        self._scopes: Optional[List[ScopeHandle]] = None
        self._token = _UNSET

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        return self.attributes[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    @property
    def storage(self):
        return self.config.storage

    @property
    def entity_id(self) -> Any:
        return self.attributes["id"]

    def changed(self, name: str) -> bool:
        """Whether name is among the changes of this event"""
        return name in self.changes

    @property
    def subject(self) -> Any:
        """The originating entity, resolved on first access"""
        if self._subject is _UNSET:
            resolver = self.config.subject_resolver
            self._subject = (
                self._guard("subject_resolver", resolver, self.entity_type, self.attributes)
                if resolver else None
            )
        return self._subject

    @property
    def scopes(self) -> List[ScopeHandle]:
        """Resolved scopes, deduplicated in order, without the global scope"""
        if self._scopes is None:
            if self.spec.scopes_of is not None:
                raw = self._guard("scopes_of", self.spec.scopes_of, self)
            elif self.config.scope_resolver is not None:
                raw = self._guard("scope_resolver", self.config.scope_resolver, self.attributes)
            else:
                raw = []

            handles = []
            for scope in raw or []:
                if scope is None:
                    continue
                handle = ScopeHandle.of(scope)
                if handle not in handles:
                    handles.append(handle)
            self._scopes = handles
        return self._scopes

    @property
    def token(self) -> Any:
        """
        The identify() result, or the entity id

        Raises:
            PredicateError: If identify() returns None
        """
        if self._token is _UNSET:
            if self.spec.identify is not None:
                token = self._guard("identify", self.spec.identify, self)
                if token is None:
                    raise PredicateError(
                        f"Counter '{self.spec.name}': identify returned None for {self.entity_id}",
                        counter=self.spec.name,
                        hook="identify"
                    )
                self._token = token
            else:
                self._token = self.entity_id
        return self._token

    @property
    def month(self) -> str:
        """Month bucket of the event as "YYYY-MM" """
        if self.spec.month_of is not None:
            value = self._guard("month_of", self.spec.month_of, self)
        else:
            value = self.attributes.get("created_at")

        try:
            return month_label(value)
        except ConfigurationError as e:
            raise PredicateError(
                f"Counter '{self.spec.name}': no usable month ({e})",
                counter=self.spec.name,
                hook="month_of"
            ) from e

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def should_run(self) -> bool:
        if self.spec.predicate is None:
            return True
        return bool(self._guard("predicate", self.spec.predicate, self))

    def should_run_async(self) -> bool:
        if self.spec.async_predicate is None:
            return True
        return bool(self._guard("async_predicate", self.spec.async_predicate, self))

    def should_decrement(self) -> bool:
        if self.spec.decrement_if is None:
            return False
        return bool(self._guard("decrement_if", self.spec.decrement_if, self))

    def _guard(self, hook: str, fn, *args) -> Any:
        try:
            return fn(*args)
        except PredicateError:
            raise
        except Exception as e:
            raise PredicateError(
                f"Counter '{self.spec.name}': {hook} failed: {e}",
                counter=self.spec.name,
                hook=hook
            ) from e

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self) -> Optional[str]:
        """
        Execution-time entrypoint: async predicate, then the action.

        Returns:
            The action performed, or None if the async predicate said no
        """
        if not self.should_run_async():
            logger.debug(f"Counter '{self.spec.name}': async predicate false for {self.entity_id}")
            return None
        return self.process()

    def process(self) -> str:
        """Perform exactly one action and return its name"""
        if self.spec.is_aggregate:
            value = self._guard("value_of", self.spec.value_of, self)
            self.append(value)
            return "append"

        if self.should_decrement():
            self.decrement()
            return "decrement"

        self.increment()
        return "increment"

    def fan_out_keys(self) -> List[CounterKey]:
        """Bucket keys for {event month, all-time} x {scopes..., global}"""
        scopes: List[Optional[ScopeHandle]] = list(self.scopes) + [None]
        return [
            self.keys.build(self.spec.name, scope=scope, month=month)
            for month in (self.month, None)
            for scope in scopes
        ]

    def increment(self) -> List[CounterKey]:
        token = self.token
        written = []

        for key in self.fan_out_keys():
            added = self.storage.add_to_set(key.serialize(), str(token))
            if self.spec.deduplicates:
                self.tracker.track(key, token, self.entity_id)
            logger.debug(f"SADD {key} {token} (new={added})")
            written.append(key)

        counter_writes.labels(counter=self.spec.name, action="increment").inc(len(written))
        return written

    def decrement(self) -> List[CounterKey]:
        token = self.token
        written = []

        for key in self.fan_out_keys():
            if self.spec.deduplicates:
                if not self.tracker.release(key, token, self.entity_id):
                    continue
            removed = self.storage.remove_from_set(key.serialize(), str(token))
            logger.debug(f"SREM {key} {token} (removed={removed})")
            written.append(key)

        counter_writes.labels(counter=self.spec.name, action="decrement").inc(len(written))
        return written

    def append(self, value: Any) -> List[CounterKey]:
        if value is None:
            raise PredicateError(
                f"Counter '{self.spec.name}': value_of returned None",
                counter=self.spec.name,
                hook="value_of"
            )

        written = []
        for key in self.fan_out_keys():
            self.storage.append_to_list(key.serialize(), value)
            logger.debug(f"RPUSH {key} {value}")
            written.append(key)

        counter_writes.labels(counter=self.spec.name, action="append").inc(len(written))
        return written
