"""
Counters - the engine facade.

Usage:
    counters = Counters(EngineConfig(storage=InMemoryBackend()))
    counters.define("users", events=["user_created"])

    counters.notify("User", "create", {"id": 1, "created_at": "2024-03-01"})
    counters.value("users")  # => 1
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from livecount.config import EngineConfig, Settings, settings_summary
from livecount.context import ExecutionContext
from livecount.definitions import CounterRegistry, CounterSpec, Lifecycle
from livecount.deferred import ThreadPoolDeferrer
from livecount.dispatcher import DispatchResult, EventDispatcher
from livecount.keys import CounterKey, KeyBuilder
from livecount.lifecycle import LifecycleNotifier
from livecount.months import MonthLike
from livecount.reader import Number, ValueReader
from livecount.storage import RedisBackend
from livecount.uniqueness import UniquenessTracker

logger = logging.getLogger(__name__)


class Counters:
    """Registration, event intake, queries and backfill over one store"""

    def __init__(self, config: EngineConfig, registry: Optional[CounterRegistry] = None):
        self.config = config
        self.registry = registry or CounterRegistry()
        self.keys = KeyBuilder()
        self.tracker = UniquenessTracker(config.storage, self.keys)
        self.dispatcher = EventDispatcher(self.registry, config, keys=self.keys, tracker=self.tracker)
        self.reader = ValueReader(self.registry, config, keys=self.keys)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "Counters":
        """
        Build a Redis-backed engine from environment settings.

        Args:
            settings: Settings (default: loaded from the environment)
            **overrides: Extra EngineConfig fields (scope_resolver, clock...)
        """
        settings = settings or Settings()
        storage = RedisBackend.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        deferrer = ThreadPoolDeferrer(settings.DEFERRED_WORKERS) if settings.DEFERRED_WORKERS > 0 else None

        config = EngineConfig(
            storage=storage,
            deferrer=overrides.pop("deferrer", deferrer),
            window_months=settings.WINDOW_MONTHS,
            **overrides,
        )
        logger.info(f"livecount engine configured: {settings_summary(settings)}")
        return cls(config)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def define(self, name: str, **options) -> CounterSpec:
        """See CounterRegistry.define"""
        return self.registry.define(name, **options)

    def aggregate(self, name: str, **options) -> CounterSpec:
        """See CounterRegistry.aggregate"""
        return self.registry.aggregate(name, **options)

    def get(self, name: str) -> CounterSpec:
        return self.registry.get(name)

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def subscribe(self, notifier: LifecycleNotifier) -> None:
        self.dispatcher.subscribe(notifier)

    def notify(
        self,
        entity_type: str,
        lifecycle: Any,
        attributes: Mapping[str, Any],
        changes: Optional[Mapping[str, Any]] = None
    ) -> List[DispatchResult]:
        return self.dispatcher.notify(entity_type, lifecycle, attributes, changes)

    def perform(self, payload: Any) -> Optional[str]:
        return self.dispatcher.perform(payload)

    def backfill(
        self,
        counter: str,
        attributes: Mapping[str, Any],
        skip_validation: bool = False,
        entity_type: Optional[str] = None
    ) -> bool:
        """
        Run a counter for a pre-existing entity, outside the event stream.

        The snapshot carries no changes, so predicates reading ctx.changes
        see nothing; pass skip_validation=True to bypass the predicate.

        Args:
            counter: Counter name
            attributes: Entity snapshot (id, created_at, ...)
            skip_validation: Skip the predicate
            entity_type: Defaults to the counter's first bound entity type

        Returns:
            True if the counter ran
        """
        spec = self.registry.get(counter)
        context = ExecutionContext(
            spec=spec,
            entity_type=entity_type or spec.events[0].entity_type,
            lifecycle=Lifecycle.CREATE,
            attributes=attributes,
            config=self.config,
            keys=self.keys,
            tracker=self.tracker,
        )

        if not skip_validation and not context.should_run():
            logger.debug(f"Backfill of '{counter}' skipped for {attributes.get('id')}")
            return False

        context.process()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def value(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> Number:
        return self.reader.value(counter, scope=scope, month=month, key_value=key_value)

    def size(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> int:
        return self.reader.size(counter, scope=scope, month=month, key_value=key_value)

    def sum(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> Number:
        return self.reader.sum(counter, scope=scope, month=month, key_value=key_value)

    def average(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> float:
        return self.reader.average(counter, scope=scope, month=month, key_value=key_value)

    def members(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> List[str]:
        return self.reader.members(counter, scope=scope, month=month, key_value=key_value)

    def elements(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> List[Number]:
        return self.reader.elements(counter, scope=scope, month=month, key_value=key_value)

    def values_grouped_by_month(
        self,
        counter: str,
        scope: Any = None,
        start_at: Optional[MonthLike] = None,
        stop_at: Optional[MonthLike] = None
    ) -> Dict[str, Number]:
        return self.reader.values_grouped_by_month(counter, scope=scope, start_at=start_at, stop_at=stop_at)

    def all_keys(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> List[CounterKey]:
        return self.reader.all_keys(counter, scope=scope, month=month, key_value=key_value)

    def reset(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> bool:
        return self.reader.reset(counter, scope=scope, month=month, key_value=key_value)
