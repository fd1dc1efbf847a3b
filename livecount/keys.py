"""
Counter keys

A CounterKey is the storage address of one bucket:
    (counter, scope_type, scope_id, month, key_value[, subject_id])

Serialized as compact JSON with a fixed field order, so the same logical key
always produces the same string and a scanned key can be parsed back into
its fields for filtering (reset / all_keys).

Absent scope = global bucket, absent month = all-time bucket. subject_id is
only set on instance-tracking keys (see livecount.uniqueness).
"""

import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Optional, Union

from livecount.exceptions import ConfigurationError
from livecount.months import MonthLike, month_label

KEY_FIELDS = ("counter", "scope_type", "scope_id", "month", "key_value", "subject_id")

_GLOB_SPECIAL = "*?["

ScopeId = Union[int, str]


def normalize_id(value: Any) -> Optional[ScopeId]:
    """Ids are kept as int/str; anything else (UUID, Decimal...) is stringified"""
    if value is None or isinstance(value, (int, str)) and not isinstance(value, bool):
        return value
    return str(value)


@dataclass(frozen=True)
class ScopeHandle:
    """An entity under which a counter is tracked independently (e.g. an organisation)"""
    type_name: str
    id: ScopeId
    # identity is (type_name, id)
    created_at: Optional[Union[date, datetime]] = field(default=None, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "id", normalize_id(self.id))

    @classmethod
    def of(cls, obj: Any) -> "ScopeHandle":
        """Build a handle from any object exposing `id` (and optionally `created_at`)"""
        if isinstance(obj, ScopeHandle):
            return obj
        if not hasattr(obj, "id"):
            raise ConfigurationError(f"Scope {obj!r} has no id")
        return cls(
            type_name=type(obj).__name__,
            id=obj.id,
            created_at=getattr(obj, "created_at", None),
        )


@dataclass(frozen=True)
class CounterKey:
    counter: str
    scope_type: Optional[str] = None
    scope_id: Optional[ScopeId] = None
    month: Optional[str] = None
    key_value: Optional[str] = None
    subject_id: Optional[str] = None

    @property
    def is_global(self) -> bool:
        return self.scope_type is None

    @property
    def is_all_time(self) -> bool:
        return self.month is None

    def serialize(self) -> str:
        return json.dumps(
            {name: getattr(self, name) for name in KEY_FIELDS},
            separators=(",", ":"),
            ensure_ascii=False,
        )

    def __str__(self) -> str:
        return self.serialize()


def _glob_escape(text: str) -> str:
    # [c] is understood by both Redis SCAN MATCH and fnmatch. A backslash
    # is read differently by the two, so it becomes "?"; matches() filters
    # the extra hits.
    escaped = []
    for c in text:
        if c == "\\":
            escaped.append("?")
        elif c in _GLOB_SPECIAL:
            escaped.append(f"[{c}]")
        else:
            escaped.append(c)
    return "".join(escaped)


class KeyBuilder:
    """Builds, parses and filters counter keys"""

    def build(
        self,
        counter: str,
        scope: Optional[Any] = None,
        month: Optional[MonthLike] = None,
        key_value: Optional[Any] = None
    ) -> CounterKey:
        """
        Build the key for one bucket.

        Args:
            counter: Counter name
            scope: ScopeHandle (or object with an id), None for the global bucket
            month: date/datetime/"YYYY-MM", None for the all-time bucket
            key_value: Optional extra discriminator

        Returns:
            CounterKey
        """
        handle = ScopeHandle.of(scope) if scope is not None else None
        return CounterKey(
            counter=counter,
            scope_type=handle.type_name if handle else None,
            scope_id=handle.id if handle else None,
            month=month_label(month) if month is not None else None,
            key_value=str(key_value) if key_value is not None else None,
        )

    def tracking_key(self, key: CounterKey, token: Any) -> CounterKey:
        """Instance-tracking key: the bucket key plus subject_id=token"""
        return replace(key, subject_id=str(token))

    def serialize(self, key: CounterKey) -> str:
        return key.serialize()

    def parse(self, raw: str) -> CounterKey:
        """
        Parse a serialized key back into its fields.

        Raises:
            ConfigurationError: If raw is not a counter key
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed counter key {raw!r}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("counter"), str):
            raise ConfigurationError(f"Malformed counter key {raw!r}: missing counter")

        return CounterKey(**{name: data.get(name) for name in KEY_FIELDS})

    def scan_pattern(self, counter: str) -> str:
        """Glob matching every key (bucket and tracking) of a counter"""
        prefix = json.dumps({"counter": counter}, separators=(",", ":"), ensure_ascii=False)[:-1]
        return _glob_escape(prefix) + ",*"

    def matches(
        self,
        key: CounterKey,
        counter: str,
        scope: Optional[Any] = None,
        month: Optional[MonthLike] = None,
        key_value: Optional[Any] = None
    ) -> bool:
        if key.counter != counter:
            return False

        if scope is not None:
            handle = ScopeHandle.of(scope)
            if key.scope_type != handle.type_name or key.scope_id != handle.id:
                return False

        if month is not None and key.month != month_label(month):
            return False

        if key_value is not None and key.key_value != str(key_value):
            return False

        return True
