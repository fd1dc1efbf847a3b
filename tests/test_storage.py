"""Tests for livecount.storage backends"""

from unittest.mock import Mock, patch

import pytest
import redis

from livecount import InMemoryBackend, KeyBuilder, RedisBackend, StorageError


class TestInMemoryBackend:

    @pytest.fixture
    def backend(self):
        return InMemoryBackend()

    def test_set_members_are_unique(self, backend):
        assert backend.add_to_set("k", 1) is True
        assert backend.add_to_set("k", "1") is False
        assert backend.set_cardinality("k") == 1
        assert backend.set_members("k") == {"1"}

    def test_remove_from_set(self, backend):
        backend.add_to_set("k", "a")
        backend.add_to_set("k", "b")

        assert backend.remove_from_set("k", "a") is True
        assert backend.remove_from_set("k", "a") is False
        assert backend.set_members("k") == {"b"}

    def test_empty_set_disappears(self, backend):
        backend.add_to_set("k", "a")
        backend.remove_from_set("k", "a")

        assert list(backend.keys()) == []
        assert backend.set_cardinality("k") == 0

    def test_list_range(self, backend):
        for value in (1, 2, 3, 4):
            assert backend.append_to_list("l", value) == value

        assert backend.list_range("l") == ["1", "2", "3", "4"]
        assert backend.list_range("l", 1, 2) == ["2", "3"]
        assert backend.list_range("l", 0, -2) == ["1", "2", "3"]
        assert backend.list_range("missing") == []

    def test_wrong_type(self, backend):
        backend.append_to_list("l", 1)

        with pytest.raises(StorageError, match="WRONGTYPE"):
            backend.add_to_set("l", "a")

    @pytest.mark.parametrize("read", ["set_cardinality", "set_members"])
    def test_set_reads_on_list_key(self, backend, read):
        backend.append_to_list("l", 1)

        with pytest.raises(StorageError, match="WRONGTYPE"):
            getattr(backend, read)("l")

    def test_list_read_on_set_key(self, backend):
        backend.add_to_set("s", "a")

        with pytest.raises(StorageError, match="WRONGTYPE"):
            backend.list_range("s")

    def test_delete_key(self, backend):
        backend.add_to_set("s", "a")
        backend.append_to_list("l", 1)

        assert backend.delete_key("s") is True
        assert backend.delete_key("l") is True
        assert backend.delete_key("s") is False

    def test_scan_with_counter_patterns(self, backend):
        """Glob characters in counter names are matched literally"""
        keys = KeyBuilder()
        plain = keys.build("weird").serialize()
        starred = keys.build("weird*name").serialize()
        backend.add_to_set(plain, "1")
        backend.add_to_set(starred, "1")

        assert backend.scan_keys(keys.scan_pattern("weird")) == [plain]
        assert backend.scan_keys(keys.scan_pattern("weird*name")) == [starred]

    def test_scan_with_quoted_and_non_ascii_names(self, backend):
        keys = KeyBuilder()
        quoted = keys.build('say "hi"').serialize()
        accented = keys.build("café").serialize()
        backend.add_to_set(quoted, "1")
        backend.add_to_set(accented, "1")

        assert backend.scan_keys(keys.scan_pattern('say "hi"')) == [quoted]
        assert backend.scan_keys(keys.scan_pattern("café")) == [accented]

    def test_flush(self, backend):
        backend.add_to_set("s", "a")
        backend.flush()

        assert list(backend.keys()) == []


class TestRedisBackend:

    @pytest.fixture
    def client(self):
        return Mock()

    @pytest.fixture
    def backend(self, client):
        return RedisBackend(client)

    def test_set_primitives(self, backend, client):
        client.sadd.return_value = 1
        client.srem.return_value = 0
        client.scard.return_value = 3
        client.smembers.return_value = {"a", "b"}

        assert backend.add_to_set("k", "a") is True
        assert backend.remove_from_set("k", "z") is False
        assert backend.set_cardinality("k") == 3
        assert backend.set_members("k") == {"a", "b"}

        client.sadd.assert_called_once_with("k", "a")
        client.srem.assert_called_once_with("k", "z")

    def test_list_primitives(self, backend, client):
        client.rpush.return_value = 2
        client.lrange.return_value = ["10", "20"]

        assert backend.append_to_list("l", 20) == 2
        assert backend.list_range("l") == ["10", "20"]

        client.rpush.assert_called_once_with("l", 20)
        client.lrange.assert_called_once_with("l", 0, -1)

    def test_scan_and_delete(self, backend, client):
        client.scan_iter.return_value = iter(["a", "b"])
        client.delete.return_value = 1

        assert backend.scan_keys("pattern*") == ["a", "b"]
        assert backend.delete_key("a") is True

        client.scan_iter.assert_called_once_with(match="pattern*", count=500)

    def test_redis_error_becomes_storage_error(self, backend, client):
        client.scard.side_effect = redis.ConnectionError("Connection refused")

        with patch('livecount.storage.storage_errors_counter') as mock_metric:
            with pytest.raises(StorageError) as exc_info:
                backend.set_cardinality("k")

            mock_metric.labels.assert_called_once_with(operation="SCARD")
            mock_metric.labels.return_value.inc.assert_called_once()

        assert exc_info.value.operation == "SCARD"
        assert exc_info.value.key == "k"
        assert isinstance(exc_info.value.__cause__, redis.ConnectionError)

    def test_scan_error(self, backend, client):
        client.scan_iter.side_effect = redis.TimeoutError("timed out")

        with pytest.raises(StorageError, match="SCAN"):
            backend.scan_keys("*")

    def test_from_url(self):
        with patch('livecount.storage.redis.Redis.from_url') as mock_from_url:
            backend = RedisBackend.from_url("redis://cache:6379/2", max_connections=10)

        mock_from_url.assert_called_once_with(
            "redis://cache:6379/2",
            encoding="utf-8",
            decode_responses=True,
            max_connections=10,
            socket_timeout=5,
        )
        assert backend.client is mock_from_url.return_value
