"""
Counter definitions and registry.

A counter is declared once at startup:

    registry.define(
        "organisations_with_users",
        events=["user_created"],
        identify=lambda ctx: ctx["organisation_id"],
        scopes_of=lambda ctx: [ScopeHandle("Department", ctx["department_id"])],
    )

and stored as an immutable CounterSpec keyed by name. Behaviour dispatches on
the closed CounterType tag; hooks are plain callables taking an
ExecutionContext.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from livecount.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

Hook = Callable[[Any], Any]


class CounterType(Enum):
    """Counter classification"""
    INCREMENT = "increment"  # set of tokens, value = cardinality
    AGGREGATE = "aggregate"  # list of numbers, value = average


class Lifecycle(Enum):
    """Entity lifecycle transitions"""
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"

    @classmethod
    def coerce(cls, value: Union["Lifecycle", str]) -> "Lifecycle":
        if isinstance(value, cls):
            return value
        try:
            return cls(_LIFECYCLE_ALIASES.get(value, value))
        except ValueError:
            raise ConfigurationError(f"Unknown lifecycle: {value!r}") from None


_LIFECYCLE_ALIASES = {
    "created": "create",
    "updated": "update",
    "destroyed": "destroy",
}

_EVENT_NAME_RE = re.compile(r"^(?P<entity>[A-Za-z0-9_]+?)_(?P<kind>created|updated|destroyed)$")


def _camelize(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


@dataclass(frozen=True)
class EventBinding:
    """An (entity type, lifecycle) pair that triggers a counter"""
    entity_type: str
    lifecycle: Lifecycle

    @classmethod
    def parse(cls, event: Union["EventBinding", Tuple[str, Any], str]) -> "EventBinding":
        """
        Accepts an EventBinding, an (entity_type, lifecycle) tuple, or an
        event name like "user_created" / "team_member_updated" (the entity
        part is camelized: "TeamMember").
        """
        if isinstance(event, EventBinding):
            return event

        if isinstance(event, tuple) and len(event) == 2:
            entity_type, lifecycle = event
            return cls(entity_type, Lifecycle.coerce(lifecycle))

        if isinstance(event, str):
            match = _EVENT_NAME_RE.match(event)
            if match:
                return cls(
                    _camelize(match.group("entity")),
                    Lifecycle.coerce(match.group("kind")),
                )

        raise ConfigurationError(f"Cannot parse event binding: {event!r}")


def _is_single_binding(value: Any) -> bool:
    if isinstance(value, (str, EventBinding)):
        return True
    return (
        isinstance(value, tuple)
        and len(value) == 2
        and (
            isinstance(value[1], Lifecycle)
            or value[1] in _LIFECYCLE_ALIASES
            or value[1] in {kind.value for kind in Lifecycle}
        )
    )


def _event_list(events: Any) -> List[Any]:
    if events is None:
        return []
    if _is_single_binding(events):
        return [events]
    return list(events)


@dataclass(frozen=True)
class CounterSpec:
    """Immutable declarative definition of one counter"""
    name: str
    events: Tuple[EventBinding, ...]
    counter_type: CounterType = CounterType.INCREMENT
    predicate: Optional[Hook] = None
    async_predicate: Optional[Hook] = None
    identify: Optional[Hook] = None
    scopes_of: Optional[Hook] = None
    decrement_if: Optional[Hook] = None
    decrement_on_destroy: bool = True
    value_of: Optional[Hook] = None
    month_of: Optional[Hook] = None
    run_async: bool = True

    @property
    def is_aggregate(self) -> bool:
        return self.counter_type is CounterType.AGGREGATE

    @property
    def deduplicates(self) -> bool:
        return self.identify is not None

    @property
    def entity_types(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(binding.entity_type for binding in self.events))

    def validate(self):
        """
        Raises:
            ConfigurationError: If the definition is incomplete
        """
        if not self.name:
            raise ConfigurationError("Counter name must not be empty")
        if not self.events:
            raise ConfigurationError(
                f"Counter '{self.name}': at least one triggering event is required"
            )
        if self.is_aggregate and self.value_of is None:
            raise ConfigurationError(
                f"Counter '{self.name}': aggregate counters require value_of"
            )


class CounterRegistry:
    """
    Registry of counter definitions keyed by name.

    Registration happens before event traffic; re-registering a name
    replaces the previous definition.
    """

    def __init__(self):
        self._specs: Dict[str, CounterSpec] = {}

    def register(self, spec: CounterSpec) -> CounterSpec:
        spec.validate()

        if spec.name in self._specs:
            logger.warning(f"Counter '{spec.name}' re-registered, replacing definition")
        self._specs[spec.name] = spec

        logger.info(
            f"Registered counter '{spec.name}' ({spec.counter_type.value}) on "
            f"{', '.join(f'{b.entity_type}.{b.lifecycle.value}' for b in spec.events)}"
        )
        return spec

    def define(
        self,
        name: str,
        *,
        events: Iterable[Any],
        counter_type: Union[CounterType, str] = CounterType.INCREMENT,
        predicate: Optional[Hook] = None,
        async_predicate: Optional[Hook] = None,
        identify: Optional[Hook] = None,
        scopes_of: Optional[Hook] = None,
        decrement_if: Optional[Hook] = None,
        decrement_on_destroy: Optional[bool] = None,
        value_of: Optional[Hook] = None,
        month_of: Optional[Hook] = None,
        run_async: bool = True
    ) -> CounterSpec:
        """
        Build and register a counter.

        Args:
            name: Unique counter name
            events: Triggering events (EventBinding, tuples or "user_created" names)
            counter_type: "increment" (default) or "aggregate"
            predicate: Gate evaluated at dispatch time
            async_predicate: Gate evaluated at execution time
            identify: Token extractor; enables deduplication
            scopes_of: Scope extractor
            decrement_if: Selects decrement instead of increment
            decrement_on_destroy: Defaults to True for increment counters
            value_of: Value appended by aggregate counters
            month_of: Month override (default: entity created_at)
            run_async: Allow deferred execution when a deferrer is configured

        Raises:
            ConfigurationError: If the definition is invalid
        """
        try:
            kind = CounterType(counter_type) if not isinstance(counter_type, CounterType) else counter_type
        except ValueError:
            raise ConfigurationError(f"Counter '{name}': unknown type {counter_type!r}") from None

        if decrement_on_destroy is None:
            decrement_on_destroy = kind is CounterType.INCREMENT

        spec = CounterSpec(
            name=name,
            events=tuple(EventBinding.parse(event) for event in _event_list(events)),
            counter_type=kind,
            predicate=predicate,
            async_predicate=async_predicate,
            identify=identify,
            scopes_of=scopes_of,
            decrement_if=decrement_if,
            decrement_on_destroy=decrement_on_destroy and kind is CounterType.INCREMENT,
            value_of=value_of,
            month_of=month_of,
            run_async=run_async,
        )
        return self.register(spec)

    def aggregate(self, name: str, *, events: Iterable[Any], value_of: Optional[Hook] = None, **options) -> CounterSpec:
        """Shortcut for an aggregate counter"""
        if value_of is None:
            raise ConfigurationError(f"Counter '{name}': you must provide the value to aggregate")
        return self.define(name, events=events, counter_type=CounterType.AGGREGATE, value_of=value_of, **options)

    def get(self, name: str) -> CounterSpec:
        """
        Raises:
            ConfigurationError: If no counter is registered under name
        """
        try:
            return self._specs[name]
        except KeyError:
            raise ConfigurationError(f"Unknown counter: {name}") from None

    lookup = get

    def unregister(self, name: str) -> CounterSpec:
        spec = self.get(name)
        del self._specs[name]
        return spec

    def names(self) -> List[str]:
        return list(self._specs)

    def counters_for(self, binding: EventBinding) -> List[CounterSpec]:
        """
        Specs triggered by binding.

        A destroy of an entity type also reaches every increment counter
        bound to that entity type with decrement_on_destroy set.
        """
        matched = []
        for spec in self._specs.values():
            if binding in spec.events:
                matched.append(spec)
            elif (
                binding.lifecycle is Lifecycle.DESTROY
                and spec.decrement_on_destroy
                and not spec.is_aggregate
                and binding.entity_type in spec.entity_types
            ):
                matched.append(spec)
        return matched

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)
