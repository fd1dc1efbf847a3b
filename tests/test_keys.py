"""Tests for counter keys and month labels"""

import uuid
from datetime import date, datetime

import pytest

from livecount import ConfigurationError, CounterKey, KeyBuilder, ScopeHandle
from livecount.months import month_label, months_between, shift_months


class TestKeyBuilder:

    @pytest.fixture
    def keys(self):
        return KeyBuilder()

    def test_global_all_time_key(self, keys):
        key = keys.build("users")

        assert key.is_global and key.is_all_time
        assert key.serialize() == (
            '{"counter":"users","scope_type":null,"scope_id":null,'
            '"month":null,"key_value":null,"subject_id":null}'
        )

    def test_scoped_monthly_key(self, keys):
        scope = ScopeHandle("Organisation", 1)

        key = keys.build("users", scope=scope, month=date(2024, 3, 5), key_value="beta")

        assert key == CounterKey("users", "Organisation", 1, "2024-03", "beta")

    def test_serialization_is_deterministic(self, keys):
        scope = ScopeHandle("Organisation", 1)

        first = keys.build("users", scope=scope, month="2024-03").serialize()
        second = keys.build("users", month=datetime(2024, 3, 31), scope=scope).serialize()

        assert first == second

    def test_parse_reverses_serialize(self, keys):
        key = keys.build("users", scope=ScopeHandle("Department", "d-1"), month="2024-01")
        tracking = keys.tracking_key(key, 8)

        assert keys.parse(key.serialize()) == key
        assert keys.parse(tracking.serialize()) == tracking
        assert tracking.subject_id == "8"

    @pytest.mark.parametrize("raw", ["not json", '{"scope_type": "Organisation"}', "[1, 2]"])
    def test_parse_rejects_malformed_keys(self, keys, raw):
        with pytest.raises(ConfigurationError, match="Malformed counter key"):
            keys.parse(raw)

    def test_scope_from_object(self, keys):
        class Organisation:
            def __init__(self, id, created_at=None):
                self.id = id
                self.created_at = created_at

        org = Organisation(uuid.UUID("12345678-1234-5678-1234-567812345678"), datetime(2023, 1, 1))
        handle = ScopeHandle.of(org)

        assert handle.type_name == "Organisation"
        assert handle.id == "12345678-1234-5678-1234-567812345678"
        assert handle.created_at == datetime(2023, 1, 1)
        assert keys.build("users", scope=org).scope_id == handle.id

    def test_scope_without_id(self):
        with pytest.raises(ConfigurationError):
            ScopeHandle.of(object())

    def test_matches_filters(self, keys):
        apple = ScopeHandle("Organisation", 1)
        key = keys.build("users", scope=apple, month="2024-06")

        assert keys.matches(key, "users")
        assert keys.matches(key, "users", scope=apple, month=date(2024, 6, 1))
        assert not keys.matches(key, "users", scope=ScopeHandle("Organisation", 2))
        assert not keys.matches(key, "users", scope=ScopeHandle("Department", 1))
        assert not keys.matches(key, "users", month="2024-05")
        assert not keys.matches(key, "users", key_value="beta")
        assert not keys.matches(key, "users_v2")

    def test_scan_pattern_only_matches_counter_prefix(self, keys):
        assert keys.scan_pattern("users") == '{"counter":"users",*'

    def test_scan_pattern_has_no_backslash(self, keys):
        """Redis and fnmatch disagree on backslashes inside patterns"""
        assert keys.scan_pattern('say "hi"') == '{"counter":"say ?"hi?"",*'
        assert keys.scan_pattern("café") == '{"counter":"café",*'

    def test_non_ascii_kept_in_keys(self, keys):
        raw = keys.build("café").serialize()

        assert raw.startswith('{"counter":"café",')
        assert keys.parse(raw).counter == "café"

    def test_scope_identity_ignores_created_at(self):
        dated = ScopeHandle("Organisation", 1, created_at=datetime(2024, 3, 10))
        undated = ScopeHandle("Organisation", 1)

        assert dated == undated
        assert len({dated, undated}) == 1
        assert dated != ScopeHandle("Organisation", 2, created_at=datetime(2024, 3, 10))


class TestMonths:

    @pytest.mark.parametrize("value,expected", [
        (date(2024, 3, 17), "2024-03"),
        (datetime(2024, 12, 31, 23, 59), "2024-12"),
        ("2024-03", "2024-03"),
        ("2024-03-17T10:00:00Z", "2024-03"),
    ])
    def test_month_label(self, value, expected):
        assert month_label(value) == expected

    @pytest.mark.parametrize("value", ["2024-13", "March", 202403, None])
    def test_month_label_rejects(self, value):
        with pytest.raises(ConfigurationError):
            month_label(value)

    def test_months_between_crosses_years(self):
        months = months_between("2023-11", date(2024, 2, 10))

        assert months == [date(2023, 11, 1), date(2023, 12, 1), date(2024, 1, 1), date(2024, 2, 1)]

    def test_shift_months(self):
        assert shift_months(date(2024, 6, 15), -24) == date(2022, 6, 1)
        assert shift_months("2024-01", -1) == date(2023, 12, 1)
