"""Tests for livecount.reader - monthly series, keys and reset"""

from datetime import date, datetime

import pytest

from livecount import ConfigurationError


def created_in(year, month, day=5):
    return datetime(year, month, day, 9, 30)


class TestValuesGroupedByMonth:

    @pytest.fixture
    def populated(self, counters, make_user, apple):
        """Users spread over 2024-01 .. 2024-06 (clock: 2024-06-15)"""
        counters.define("users", events=["user_created"], scopes_of=lambda ctx: [apple])
        per_month = {1: 2, 2: 5, 3: 3, 4: 4, 5: 2, 6: 1}
        for month, how_many in per_month.items():
            for _ in range(how_many):
                counters.notify("User", "create", make_user(created_at=created_in(2024, month)))
        return per_month

    def test_default_window_is_24_months(self, counters, populated):
        series = counters.values_grouped_by_month("users")

        assert len(series) == 25
        assert list(series)[0] == "2022-06"
        assert list(series)[-1] == "2024-06"
        assert series["2023-12"] == 0
        assert series["2024-02"] == 5

    def test_start_at(self, counters, populated):
        series = counters.values_grouped_by_month("users", start_at=date(2024, 1, 20))

        assert series == {
            "2024-01": 2,
            "2024-02": 5,
            "2024-03": 3,
            "2024-04": 4,
            "2024-05": 2,
            "2024-06": 1,
        }

    def test_stop_at_excludes_later_months(self, counters, populated):
        series = counters.values_grouped_by_month(
            "users",
            start_at="2024-01",
            stop_at=datetime(2024, 5, 1),
        )

        assert list(series) == ["2024-01", "2024-02", "2024-03", "2024-04"]

    def test_scope_creation_starts_window(self, counters, populated, apple):
        """apple was created 2024-03-10"""
        series = counters.values_grouped_by_month("users", scope=apple)

        assert series == {"2024-03": 3, "2024-04": 4, "2024-05": 2, "2024-06": 1}

    def test_values_are_rounded(self, counters, make_user):
        counters.aggregate("score", events=["user_created"], value_of=lambda ctx: ctx["score"])
        for score in (1, 2, 2):
            counters.notify("User", "create", make_user(score=score))

        series = counters.values_grouped_by_month("score", start_at="2024-06")

        assert series == {"2024-06": 1.67}

    def test_unknown_counter(self, counters):
        with pytest.raises(ConfigurationError):
            counters.values_grouped_by_month("missing")


class TestReset:

    @pytest.fixture
    def populated(self, counters, make_user, apple, microsoft):
        counters.define(
            "users",
            events=["user_created"],
            scopes_of=lambda ctx: [apple if ctx["organisation_id"] == 1 else microsoft],
        )
        counters.define("others", events=["user_created"])
        for org, month in ((1, 5), (1, 6), (2, 6)):
            counters.notify("User", "create", make_user(organisation_id=org, created_at=created_in(2024, month)))

    def test_reset_everything(self, counters, populated, apple, microsoft):
        assert counters.reset("users") is True

        for scope in (None, apple, microsoft):
            for month in (None, "2024-05", "2024-06"):
                assert counters.size("users", scope=scope, month=month) == 0
        assert counters.all_keys("users") == []
        assert counters.value("others") == 3

    def test_reset_one_scope(self, counters, populated, apple, microsoft):
        counters.reset("users", scope=apple)

        assert counters.value("users", scope=apple) == 0
        assert counters.value("users", scope=microsoft) == 1
        assert counters.value("users") == 3

    def test_reset_one_month(self, counters, populated, apple):
        counters.reset("users", month="2024-06")

        assert counters.value("users", month="2024-06") == 0
        assert counters.value("users", scope=apple, month="2024-05") == 1
        assert counters.value("users") == 3

    def test_all_keys(self, counters, populated, apple):
        keys = counters.all_keys("users", scope=apple)

        assert {key.month for key in keys} == {None, "2024-05", "2024-06"}
        assert all(key.scope_id == apple.id for key in keys)

    def test_reset_removes_tracking_keys(self, counters, make_user):
        counters.define("orgs", events=["user_created"], identify=lambda ctx: ctx["organisation_id"])
        counters.notify("User", "create", make_user(organisation_id=8))
        assert any(key.subject_id for key in counters.all_keys("orgs"))

        counters.reset("orgs")

        assert counters.all_keys("orgs") == []
