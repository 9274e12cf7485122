"""Live state cache tests (in-memory and Redis backends)."""

import dataclasses
from unittest.mock import MagicMock, patch

import orjson
import pytest

from rack_common.config import get_settings
from rack_ingest.live_state import (
    InMemoryLiveStateCache,
    Liveness,
    RedisLiveStateCache,
    create_live_state_cache,
)


class TestInMemoryLiveState:
    def test_touch_creates_online_entry(self):
        cache = InMemoryLiveStateCache()
        cache.touch("RACK-01", 100.0, {"weight": 5.0})

        entry = cache.get("RACK-01")
        assert entry.last_heartbeat == 100.0
        assert entry.state is Liveness.ONLINE
        assert entry.reading == {"weight": 5.0}
        assert len(cache) == 1

    def test_touch_keeps_state_and_reading(self):
        cache = InMemoryLiveStateCache()
        cache.touch("RACK-01", 100.0, {"weight": 5.0})
        cache.set_state("RACK-01", Liveness.OFFLINE)

        cache.touch("RACK-01", 130.0)

        entry = cache.get("RACK-01")
        assert entry.state is Liveness.OFFLINE
        assert entry.reading == {"weight": 5.0}
        assert entry.last_heartbeat == 130.0

    def test_heartbeat_never_moves_backwards(self):
        cache = InMemoryLiveStateCache()
        cache.touch("RACK-01", 200.0)
        cache.touch("RACK-01", 150.0)

        assert cache.get("RACK-01").last_heartbeat == 200.0

    def test_set_state_unknown_device_is_noop(self):
        cache = InMemoryLiveStateCache()
        cache.set_state("RACK-404", Liveness.OFFLINE)

        assert cache.get("RACK-404") is None

    def test_items_is_a_snapshot(self):
        cache = InMemoryLiveStateCache()
        cache.touch("A", 1.0)
        snapshot = cache.items()
        cache.touch("B", 2.0)
        cache.remove("A")

        assert [device_id for device_id, _ in snapshot] == ["A"]
        assert [device_id for device_id, _ in cache.items()] == ["B"]


class TestRedisLiveState:
    @pytest.fixture
    def client(self):
        return MagicMock()

    def test_touch_writes_hash_and_keeps_state(self, client):
        cache = RedisLiveStateCache(client)
        pipe = client.pipeline.return_value

        cache.touch("RACK-01", 100.5, {"weight": 5.0})

        mapping = pipe.hset.call_args.kwargs["mapping"]
        assert pipe.hset.call_args.args == ("rack:live:RACK-01",)
        assert float(mapping["last_heartbeat"]) == 100.5
        assert orjson.loads(mapping["reading"]) == {"weight": 5.0}
        pipe.hsetnx.assert_called_once_with("rack:live:RACK-01", "state", "ONLINE")
        pipe.execute.assert_called_once()

    def test_get_decodes_entry(self, client):
        client.hgetall.return_value = {
            "last_heartbeat": "100.5",
            "state": "OFFLINE",
            "reading": '{"status":"LOW"}',
        }

        entry = RedisLiveStateCache(client).get("RACK-01")

        assert entry.last_heartbeat == 100.5
        assert entry.state is Liveness.OFFLINE
        assert entry.reading == {"status": "LOW"}

    def test_get_missing(self, client):
        client.hgetall.return_value = {}

        assert RedisLiveStateCache(client).get("RACK-01") is None

    def test_items_scans_prefix(self, client):
        client.scan_iter.return_value = ["rack:live:A"]
        client.hgetall.return_value = {"last_heartbeat": "1.0"}

        items = RedisLiveStateCache(client).items()

        client.scan_iter.assert_called_once_with(match="rack:live:*")
        assert [device_id for device_id, _ in items] == ["A"]

    def test_set_state_only_for_known_devices(self, client):
        client.exists.return_value = 0
        cache = RedisLiveStateCache(client)

        cache.set_state("RACK-01", Liveness.OFFLINE)

        client.hset.assert_not_called()


class TestFactory:
    def test_memory_backend(self):
        settings = dataclasses.replace(get_settings(), live_state_backend="memory")

        assert isinstance(create_live_state_cache(settings), InMemoryLiveStateCache)

    def test_unreachable_redis_falls_back_to_memory(self):
        settings = dataclasses.replace(get_settings(), live_state_backend="redis")

        with patch.object(RedisLiveStateCache, "from_url", side_effect=ConnectionError("refused")):
            cache = create_live_state_cache(settings)

        assert isinstance(cache, InMemoryLiveStateCache)
