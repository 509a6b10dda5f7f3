"""Tests for the Kafka and Elasticsearch client wrappers with mocked libraries."""
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka.errors import KafkaConnectionError
from elasticsearch import ConnectionError as ESConnectionError

from logharbor.core.errors import StartupError
from logharbor.db.search import SearchIndex
from logharbor.services.kafka_client import KafkaLogConsumer, KafkaLogPublisher, QueueMessage
from logharbor.services.redis_client import close_redis, get_redis, stats_sink_enabled, write_stats
from tests.conftest import make_config


class TestKafkaLogConsumer:
    @pytest.mark.asyncio
    async def test_poll_returns_single_record(self):
        consumer = KafkaLogConsumer("localhost:9092", "logs", "log-processor-group")
        record = SimpleNamespace(
            key=b"log-agent", value=b'{"level":"INFO"}', topic="logs", partition=2, offset=41
        )
        consumer._consumer = MagicMock()
        consumer._consumer.getmany = AsyncMock(return_value={"tp": [record]})

        msg = await consumer.poll(0.1)

        assert msg == QueueMessage(
            key=b"log-agent", value=b'{"level":"INFO"}', topic="logs", partition=2, offset=41
        )
        consumer._consumer.getmany.assert_awaited_once_with(timeout_ms=100, max_records=1)

    @pytest.mark.asyncio
    async def test_poll_timeout_returns_none(self):
        consumer = KafkaLogConsumer("localhost:9092", "logs", "g")
        consumer._consumer = MagicMock()
        consumer._consumer.getmany = AsyncMock(return_value={})
        assert await consumer.poll(0.1) is None

    @pytest.mark.asyncio
    async def test_unreachable_broker_is_startup_error(self):
        fake = MagicMock()
        fake.start = AsyncMock(side_effect=KafkaConnectionError("no brokers"))
        fake.stop = AsyncMock()
        with patch("logharbor.services.kafka_client.AIOKafkaConsumer", return_value=fake):
            consumer = KafkaLogConsumer("localhost:9092", "logs", "g")
            with pytest.raises(StartupError):
                await consumer.start()
        fake.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_logs_subscription(self, caplog):
        fake = MagicMock()
        fake.start = AsyncMock()
        with patch("logharbor.services.kafka_client.AIOKafkaConsumer", return_value=fake):
            consumer = KafkaLogConsumer("localhost:9092", "logs", "log-processor-group")
            with caplog.at_level("INFO", logger="logharbor.kafka"):
                await consumer.start()

        assert "Kafka consumer subscribed to topic logs (group: log-processor-group)" in caplog.messages

    @pytest.mark.asyncio
    async def test_publisher_sends_keyed_message(self):
        fake = MagicMock()
        fake.start = AsyncMock()
        fake.send_and_wait = AsyncMock()
        with patch("logharbor.services.kafka_client.AIOKafkaProducer", return_value=fake) as cls:
            publisher = KafkaLogPublisher("localhost:9092", "logs", client_id="log-agent-svc")
            await publisher.start()
        assert cls.call_args.kwargs["acks"] == "all"

        await publisher.publish(b"svc", b"{}")
        fake.send_and_wait.assert_awaited_once_with("logs", value=b"{}", key=b"svc")


class TestSearchIndex:
    @pytest.mark.asyncio
    async def test_index_success(self):
        es = MagicMock()
        es.index = AsyncMock(return_value={"result": "created"})
        search = SearchIndex("http://localhost:9200", client=es)

        assert await search.index("logs", {"a": 1}) is True
        es.index.assert_awaited_once_with(index="logs", document={"a": 1})

    @pytest.mark.asyncio
    async def test_index_failure_returns_false(self):
        es = MagicMock()
        es.index = AsyncMock(side_effect=ESConnectionError("connection refused"))
        search = SearchIndex("http://localhost:9200", client=es)

        assert await search.index("logs", {"a": 1}) is False

    @pytest.mark.asyncio
    async def test_check_fails_when_ping_false(self):
        es = MagicMock()
        es.ping = AsyncMock(return_value=False)
        search = SearchIndex("http://localhost:9200", client=es)

        with pytest.raises(StartupError):
            await search.check()
        assert await search.ping() is False


class TestRedisStats:
    @pytest.mark.asyncio
    async def test_write_stats_sets_key_with_ttl(self):
        r = MagicMock()
        r.set = AsyncMock()
        with patch("logharbor.services.redis_client.get_redis", AsyncMock(return_value=r)):
            await write_stats({"received": 3})

        key, value = r.set.await_args.args
        assert key == "logharbor:processor:stats"
        assert json.loads(value) == {"received": 3}
        assert r.set.await_args.kwargs == {"ex": 60}

    @pytest.mark.asyncio
    async def test_write_stats_uses_given_config(self):
        r = MagicMock()
        r.set = AsyncMock()
        config = make_config(REDIS_URL="redis://stats-host:6379/0", REDIS_STATS_KEY="custom:stats")
        get = AsyncMock(return_value=r)
        with patch("logharbor.services.redis_client.get_redis", get):
            await write_stats({"received": 1}, config)

        get.assert_awaited_once_with(config)
        assert r.set.await_args.args[0] == "custom:stats"

    @pytest.mark.asyncio
    async def test_get_redis_connects_to_configured_url(self):
        config = make_config(REDIS_URL="redis://stats-host:6379/0")
        client = MagicMock()
        client.aclose = AsyncMock()
        with patch("logharbor.services.redis_client.redis.from_url", return_value=client) as from_url:
            assert await get_redis(config) is client
            await close_redis()

        assert from_url.call_args.args[0] == "redis://stats-host:6379/0"
        client.aclose.assert_awaited_once()

    def test_sink_enabled_follows_config(self):
        assert stats_sink_enabled(make_config(REDIS_URL="redis://stats-host:6379/0"))
        assert not stats_sink_enabled(make_config(REDIS_URL="  "))
