"""
Value reader - queries over stored counters.

- increment counters: value = number of tokens in the bucket set
- aggregate counters: value = average of the bucket list (0 when empty)

values_grouped_by_month returns an ordered {"YYYY-MM": value} series.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from livecount.config import EngineConfig
from livecount.definitions import CounterRegistry, CounterSpec
from livecount.keys import CounterKey, KeyBuilder, ScopeHandle
from livecount.months import MonthLike, as_date, months_between, shift_months

logger = logging.getLogger(__name__)

Number = Union[int, float]


def _parse_number(raw: str) -> Number:
    try:
        return int(raw)
    except ValueError:
        return float(raw)


class ValueReader:
    """Reads sizes, sums, averages and monthly series"""

    def __init__(
        self,
        registry: CounterRegistry,
        config: EngineConfig,
        keys: Optional[KeyBuilder] = None
    ):
        self.registry = registry
        self.config = config
        self.keys = keys or KeyBuilder()

    @property
    def storage(self):
        return self.config.storage

    def _key(
        self,
        counter: str,
        scope: Optional[Any],
        month: Optional[MonthLike],
        key_value: Optional[Any]
    ) -> str:
        self.registry.get(counter)
        return self.keys.build(counter, scope=scope, month=month, key_value=key_value).serialize()

    def size(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> int:
        """Number of distinct tokens in the bucket"""
        return self.storage.set_cardinality(self._key(counter, scope, month, key_value))

    def members(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> List[str]:
        """Tokens in the bucket, sorted"""
        return sorted(self.storage.set_members(self._key(counter, scope, month, key_value)))

    def elements(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> List[Number]:
        """Values appended to the bucket, in delivery order"""
        raw = self.storage.list_range(self._key(counter, scope, month, key_value), 0, -1)
        return [_parse_number(value) for value in raw]

    def sum(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> Number:
        return sum(self.elements(counter, scope=scope, month=month, key_value=key_value))

    def average(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> float:
        """
        Average of the appended values.

        Returns:
            0 for an empty bucket
        """
        values = self.elements(counter, scope=scope, month=month, key_value=key_value)
        if not values:
            return 0
        return sum(values) / float(len(values))

    def value(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> Number:
        """average() for aggregate counters, size() otherwise"""
        spec: CounterSpec = self.registry.get(counter)
        if spec.is_aggregate:
            return self.average(counter, scope=scope, month=month, key_value=key_value)
        return self.size(counter, scope=scope, month=month, key_value=key_value)

    def values_grouped_by_month(
        self,
        counter: str,
        scope: Any = None,
        start_at: Optional[MonthLike] = None,
        stop_at: Optional[MonthLike] = None
    ) -> Dict[str, Number]:
        """
        Values per month, e.g. {"2024-01": 33.3, "2024-02": 36.6}

        The window starts at start_at, else at the scope's creation time,
        else window_months before the current month; it ends at the current
        month. Months starting at or after stop_at are dropped.

        Args:
            counter: Counter name
            scope: Scope (None for the global bucket)
            start_at: First month of the window (optional)
            stop_at: Exclusive upper bound (optional)

        Returns:
            Ordered mapping month label -> value rounded to 2 decimals
        """
        self.registry.get(counter)
        today = self.config.now()

        if start_at is None and scope is not None:
            start_at = ScopeHandle.of(scope).created_at
        if start_at is None:
            start_at = shift_months(today, -self.config.window_months)

        stop = as_date(stop_at)
        series: Dict[str, Number] = {}

        for month in months_between(start_at, today):
            if stop is not None and month >= stop:
                continue
            label = f"{month.year:04d}-{month.month:02d}"
            series[label] = round(self.value(counter, scope=scope, month=month), 2)

        return series

    def all_keys(
        self,
        counter: str,
        scope: Any = None,
        month: MonthLike = None,
        key_value: Any = None
    ) -> List[CounterKey]:
        """Every stored key of counter (bucket and tracking keys) matching the filters"""
        self.registry.get(counter)

        matched = []
        for raw in self.storage.scan_keys(self.keys.scan_pattern(counter)):
            key = self.keys.parse(raw)
            if self.keys.matches(key, counter, scope=scope, month=month, key_value=key_value):
                matched.append(key)
        return matched

    def reset(self, counter: str, scope: Any = None, month: MonthLike = None, key_value: Any = None) -> bool:
        """Delete every key of counter matching the filters"""
        keys = self.all_keys(counter, scope=scope, month=month, key_value=key_value)
        for key in keys:
            self.storage.delete_key(key.serialize())

        logger.info(f"Reset '{counter}': {len(keys)} key(s) deleted")
        return True
