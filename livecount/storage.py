"""
Storage backends for counter values.

A backend only exposes set and list primitives plus key scanning; it has no
counting logic. Every primitive must be atomic at the store: the engine
relies on that and on set-member uniqueness instead of its own locking.

Backends:
- RedisBackend: production store (redis-py, SADD/SREM/SCARD/RPUSH/...)
- InMemoryBackend: process-local store for tests and single-process use
"""

import fnmatch
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Set, Union

import redis
from prometheus_client import Counter

from livecount.exceptions import StorageError

logger = logging.getLogger(__name__)

# Prometheus metrics
storage_errors_counter = Counter(
    'livecount_storage_errors_total',
    'Total key-value primitive failures',
    ['operation']
)

Member = Union[str, int, float]


class StorageBackend(ABC):
    """Key-value primitives required by the counting engine"""

    @abstractmethod
    def add_to_set(self, key: str, member: Member) -> bool:
        """Add member to set; True if it was not present"""

    @abstractmethod
    def remove_from_set(self, key: str, member: Member) -> bool:
        """Remove member from set; True if it was present"""

    @abstractmethod
    def set_cardinality(self, key: str) -> int:
        """Number of members in set (0 if missing)"""

    @abstractmethod
    def set_members(self, key: str) -> Set[str]:
        """All members of set"""

    @abstractmethod
    def append_to_list(self, key: str, value: Member) -> int:
        """Append value to list; returns new length"""

    @abstractmethod
    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        """List values between start and stop (inclusive, negative from end)"""

    @abstractmethod
    def scan_keys(self, pattern: str) -> List[str]:
        """Keys matching a glob pattern"""

    @abstractmethod
    def delete_key(self, key: str) -> bool:
        """Delete key; True if it existed"""


class RedisBackend(StorageBackend):
    """
    Redis-backed storage

    Usage:
        backend = RedisBackend.from_url("redis://localhost:6379/0")
        backend.add_to_set(key, "42")
    """

    def __init__(self, client: redis.Redis, scan_count: int = 500):
        """
        Args:
            client: redis-py client created with decode_responses=True
            scan_count: COUNT hint for SCAN iterations
        """
        self.client = client
        self.scan_count = scan_count

    @classmethod
    def from_url(
        cls,
        url: str,
        max_connections: int = 50,
        socket_timeout: int = 5
    ) -> "RedisBackend":
        client = redis.Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
        )
        return cls(client)

    def _call(self, operation: str, key: str, fn, *args):
        try:
            return fn(*args)
        except redis.RedisError as e:
            storage_errors_counter.labels(operation=operation).inc()
            logger.error(f"Redis {operation} error on {key}: {e}")
            raise StorageError(
                f"Redis {operation} failed for {key}: {e}",
                operation=operation,
                key=key
            ) from e

    def add_to_set(self, key: str, member: Member) -> bool:
        return self._call("SADD", key, self.client.sadd, key, member) > 0

    def remove_from_set(self, key: str, member: Member) -> bool:
        return self._call("SREM", key, self.client.srem, key, member) > 0

    def set_cardinality(self, key: str) -> int:
        return int(self._call("SCARD", key, self.client.scard, key))

    def set_members(self, key: str) -> Set[str]:
        return set(self._call("SMEMBERS", key, self.client.smembers, key))

    def append_to_list(self, key: str, value: Member) -> int:
        return int(self._call("RPUSH", key, self.client.rpush, key, value))

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        return list(self._call("LRANGE", key, self.client.lrange, key, start, stop))

    def scan_keys(self, pattern: str) -> List[str]:
        def scan() -> List[str]:
            return list(self.client.scan_iter(match=pattern, count=self.scan_count))

        return self._call("SCAN", pattern, scan)

    def delete_key(self, key: str) -> bool:
        return self._call("DEL", key, self.client.delete, key) > 0


class InMemoryBackend(StorageBackend):
    """
    Process-local storage with Redis semantics

    Members are stored as strings, like a decode_responses Redis client.
    Each primitive holds the lock for its whole duration.
    """

    def __init__(self):
        self._sets: Dict[str, Set[str]] = {}
        self._lists: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def _check_type(self, key: str, expected: str):
        other = self._lists if expected == "set" else self._sets
        if key in other:
            raise StorageError(
                f"WRONGTYPE operation against key holding the wrong kind of value: {key}",
                operation=expected,
                key=key
            )

    def add_to_set(self, key: str, member: Member) -> bool:
        with self._lock:
            self._check_type(key, "set")
            members = self._sets.setdefault(key, set())
            value = str(member)
            if value in members:
                return False
            members.add(value)
            return True

    def remove_from_set(self, key: str, member: Member) -> bool:
        with self._lock:
            self._check_type(key, "set")
            members = self._sets.get(key)
            if not members or str(member) not in members:
                return False
            members.discard(str(member))
            if not members:
                # Redis drops empty sets
                del self._sets[key]
            return True

    def set_cardinality(self, key: str) -> int:
        with self._lock:
            self._check_type(key, "set")
            return len(self._sets.get(key, ()))

    def set_members(self, key: str) -> Set[str]:
        with self._lock:
            self._check_type(key, "set")
            return set(self._sets.get(key, ()))

    def append_to_list(self, key: str, value: Member) -> int:
        with self._lock:
            self._check_type(key, "list")
            values = self._lists.setdefault(key, [])
            values.append(str(value))
            return len(values)

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self._lock:
            self._check_type(key, "list")
            values = self._lists.get(key, [])
            end = len(values) + stop + 1 if stop < 0 else stop + 1
            return values[start:end]

    def scan_keys(self, pattern: str) -> List[str]:
        with self._lock:
            keys = list(self._sets) + list(self._lists)
        return [key for key in keys if fnmatch.fnmatchcase(key, pattern)]

    def delete_key(self, key: str) -> bool:
        with self._lock:
            existed = key in self._sets or key in self._lists
            self._sets.pop(key, None)
            self._lists.pop(key, None)
            return existed

    def keys(self) -> Iterator[str]:
        """All stored keys (for tests)"""
        with self._lock:
            return iter(list(self._sets) + list(self._lists))

    def flush(self):
        """Drop everything (for tests)"""
        with self._lock:
            self._sets.clear()
            self._lists.clear()
