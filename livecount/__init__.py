"""livecount - real-time business counters over a key-value store"""

from livecount.config import EngineConfig, Settings, configure_logging
from livecount.context import ExecutionContext
from livecount.definitions import CounterRegistry, CounterSpec, CounterType, EventBinding, Lifecycle
from livecount.deferred import Deferrer, ThreadPoolDeferrer
from livecount.dispatcher import DispatchResult, EventDispatcher
from livecount.engine import Counters
from livecount.events import DeferredJob, LifecycleEvent
from livecount.exceptions import ConfigurationError, LivecountError, PredicateError, StorageError
from livecount.keys import CounterKey, KeyBuilder, ScopeHandle
from livecount.lifecycle import LifecycleBus, LifecycleNotifier
from livecount.reader import ValueReader
from livecount.storage import InMemoryBackend, RedisBackend, StorageBackend
from livecount.uniqueness import UniquenessTracker

__all__ = [
    "ConfigurationError",
    "CounterKey",
    "CounterRegistry",
    "CounterSpec",
    "CounterType",
    "Counters",
    "DeferredJob",
    "Deferrer",
    "DispatchResult",
    "EngineConfig",
    "EventBinding",
    "EventDispatcher",
    "ExecutionContext",
    "InMemoryBackend",
    "KeyBuilder",
    "Lifecycle",
    "LifecycleBus",
    "LifecycleEvent",
    "LifecycleNotifier",
    "LivecountError",
    "PredicateError",
    "RedisBackend",
    "ScopeHandle",
    "Settings",
    "StorageBackend",
    "StorageError",
    "ThreadPoolDeferrer",
    "UniquenessTracker",
    "ValueReader",
    "configure_logging",
]
