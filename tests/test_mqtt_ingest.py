"""MQTT ingress tests.

Covers:
1. Topic routing and payload validation (aliases, fallbacks)
2. Malformed payloads are dropped, never raised
3. Dispatch to the pipeline by message kind
4. Async processor backpressure
5. paho callback path (no broker)

Run:
    pytest tests/test_mqtt_ingest.py -v
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import orjson
import pytest

from rack_ingest.errors import MalformedPayload
from rack_ingest.mqtt import (
    AsyncMessageProcessor,
    CommandResponseMessage,
    HeartbeatMessage,
    MessageHandler,
    MQTTReceiver,
    TelemetryMessage,
    parse_message,
    parse_topic,
)


def encode(data) -> bytes:
    return orjson.dumps(data)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pipeline() -> MagicMock:
    return MagicMock()


@pytest.fixture
def handler(pipeline) -> MessageHandler:
    return MessageHandler(pipeline, namespace="intellirack")


@pytest.fixture
def telemetry_payload() -> dict:
    return {
        "deviceId": "RACK-01",
        "slotId": 3,
        "ingredientName": "Flour",
        "weight": 512.5,
        "status": "OK",
        "tagUID": "04A1",
        "ipAddress": "10.0.0.5",
        "timestamp": "2026-03-01T10:00:00Z",
    }


# =============================================================================
# TEST 1: ROUTING / VALIDATION
# =============================================================================

class TestTopics:
    @pytest.mark.parametrize(
        "topic,kind",
        [
            ("intellirack/RACK-01", "default"),
            ("intellirack/RACK-01/data", "data"),
            ("intellirack/RACK-01/Heartbeat", "heartbeat"),
            ("intellirack/RACK-01/status", "status"),
            ("intellirack/RACK-01/response", "response"),
        ],
    )
    def test_kind(self, topic, kind):
        route = parse_topic(topic, "intellirack")

        assert route.device_id == "RACK-01"
        assert route.kind == kind

    @pytest.mark.parametrize("topic", ["intellirack", "other/RACK-01/data", ""])
    def test_unroutable(self, topic):
        with pytest.raises(MalformedPayload):
            parse_topic(topic, "intellirack")

    def test_heartbeat_and_status_are_heartbeats(self):
        assert parse_topic("intellirack/A/heartbeat", "intellirack").is_heartbeat
        assert parse_topic("intellirack/A/status", "intellirack").is_heartbeat
        assert not parse_topic("intellirack/A/data", "intellirack").is_heartbeat


class TestValidation:
    def test_telemetry_fields(self, telemetry_payload):
        message = parse_message(parse_topic("intellirack/RACK-01/data", "intellirack"), telemetry_payload)

        assert isinstance(message, TelemetryMessage)
        assert message.slot_id == "3"
        assert message.ingredient_name == "Flour"
        assert message.weight == 512.5
        assert message.tag_uid == "04A1"
        assert message.ip == "10.0.0.5"
        assert message.timestamp == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("key", ["ingredient", "ingredientName", "ingredient_name"])
    def test_ingredient_aliases(self, key):
        message = TelemetryMessage.model_validate({key: " Sugar "})

        assert message.ingredient_name == "Sugar"
        assert message.has_ingredient

    def test_blank_ingredient_is_absent(self):
        assert not TelemetryMessage.model_validate({"ingredientName": "   "}).has_ingredient

    def test_naive_timestamp_is_utc(self):
        message = TelemetryMessage.model_validate({"timestamp": "2026-03-01T10:00:00"})

        assert message.timestamp.tzinfo is not None
        assert message.timestamp.utcoffset().total_seconds() == 0

    def test_device_id_falls_back_to_topic(self):
        message = parse_message(parse_topic("intellirack/RACK-07/data", "intellirack"), {"weight": 1})

        assert message.device_id == "RACK-07"

    def test_payload_device_id_wins(self):
        message = parse_message(parse_topic("intellirack/RACK-07/data", "intellirack"), {"deviceId": "RACK-08"})

        assert message.device_id == "RACK-08"

    def test_message_kind_by_topic(self):
        hb = parse_message(parse_topic("intellirack/A/heartbeat", "intellirack"), {"ip": "1.2.3.4"})
        resp = parse_message(parse_topic("intellirack/A/response", "intellirack"), {"command": "read"})

        assert isinstance(hb, HeartbeatMessage)
        assert isinstance(resp, CommandResponseMessage)

    def test_extra_fields_ignored(self):
        message = TelemetryMessage.model_validate({"weight": 1, "rssi": -60})

        assert message.weight == 1

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (42, "42"),
            ([1, 2], "[1, 2]"),
            ("OK", "OK"),
            ({"ok": True}, {"ok": True}),
            (None, None),
        ],
    )
    def test_response_coerced(self, raw, expected):
        telemetry = TelemetryMessage.model_validate({"weight": 1, "command": "tare", "response": raw})
        response = CommandResponseMessage.model_validate({"command": "tare", "response": raw})

        assert telemetry.response == expected
        assert response.response == expected

    def test_numeric_response_keeps_reading(self, handler, pipeline):
        payload = {"weight": 730.5, "ingredientName": "Rice", "command": "tare", "response": 0}

        assert handler.handle("intellirack/RACK-01/data", encode(payload)) is True

        (message,) = pipeline.handle_telemetry.call_args.args
        assert message.weight == 730.5
        assert message.response == "0"
        assert handler.stats.malformed == 0


# =============================================================================
# TEST 2: MALFORMED PAYLOADS
# =============================================================================

class TestMalformedPayload:
    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2, 3]",
            b'{"weight": "heavy"}',
            b'{"weight": NaN}',
            b"",
        ],
    )
    def test_dropped(self, handler, pipeline, payload):
        assert handler.handle("intellirack/RACK-01/data", payload) is False

        assert handler.stats.malformed == 1
        pipeline.handle_telemetry.assert_not_called()

    def test_response_without_command(self, handler, pipeline):
        assert handler.handle("intellirack/RACK-01/response", encode({"response": "OK"})) is False
        pipeline.handle_response.assert_not_called()

    def test_error_names_topic(self, handler):
        with pytest.raises(MalformedPayload) as exc:
            handler.parse("intellirack/RACK-01/data", b"{")

        assert exc.value.topic == "intellirack/RACK-01/data"


# =============================================================================
# TEST 3: DISPATCH
# =============================================================================

class TestDispatch:
    def test_telemetry(self, handler, pipeline, telemetry_payload):
        assert handler.handle("intellirack/RACK-01/data", encode(telemetry_payload)) is True

        (message,) = pipeline.handle_telemetry.call_args.args
        assert message.weight == 512.5
        assert handler.stats.processed == 1

    def test_default_topic_is_telemetry(self, handler, pipeline):
        handler.handle("intellirack/RACK-01", encode({"weight": 1}))

        pipeline.handle_telemetry.assert_called_once()

    def test_heartbeat(self, handler, pipeline):
        handler.handle("intellirack/RACK-01/heartbeat", encode({}))

        pipeline.handle_heartbeat.assert_called_once()
        pipeline.handle_telemetry.assert_not_called()

    def test_response(self, handler, pipeline):
        handler.handle("intellirack/RACK-01/response", encode({"command": "read", "response": "UID:01"}))

        pipeline.handle_response.assert_called_once()

    def test_pipeline_error_is_contained(self, handler, pipeline):
        pipeline.handle_telemetry.side_effect = RuntimeError("boom")

        assert handler.handle("intellirack/RACK-01/data", encode({"weight": 1})) is False
        assert handler.stats.failed == 1

    def test_subscription(self, handler):
        assert handler.subscription == "intellirack/#"


# =============================================================================
# TEST 4: ASYNC PROCESSOR
# =============================================================================

class TestAsyncProcessor:
    def test_workers_process_messages(self, handler, pipeline):
        processor = AsyncMessageProcessor(handler, max_queue_size=100, num_workers=2)
        processor.start()
        try:
            for i in range(10):
                assert processor.enqueue(TelemetryMessage.model_validate({"deviceId": f"R{i}", "weight": i}))
            processor.join()
        finally:
            processor.stop()

        assert pipeline.handle_telemetry.call_count == 10
        assert processor.metrics["processed"] == 10
        assert handler.stats.processed == 10

    def test_full_queue_drops(self, handler):
        processor = AsyncMessageProcessor(handler, max_queue_size=1, num_workers=1)
        message = TelemetryMessage.model_validate({"deviceId": "R1"})

        assert processor.enqueue(message) is True
        assert processor.enqueue(message) is False
        assert processor.metrics["dropped"] == 1

    def test_worker_survives_errors(self, handler, pipeline):
        pipeline.handle_telemetry.side_effect = [RuntimeError("boom"), None]
        processor = AsyncMessageProcessor(handler, max_queue_size=10, num_workers=1)
        processor.start()
        try:
            processor.enqueue(TelemetryMessage.model_validate({"deviceId": "R1"}))
            processor.enqueue(TelemetryMessage.model_validate({"deviceId": "R2"}))
            processor.join()
        finally:
            processor.stop()

        assert processor.metrics["errors"] == 1
        assert processor.metrics["processed"] == 1


# =============================================================================
# TEST 5: PAHO CALLBACKS
# =============================================================================

class TestReceiverCallbacks:
    def test_on_message_enqueues(self, handler):
        processor = MagicMock()
        processor.enqueue.return_value = True
        receiver = MQTTReceiver(handler, processor=processor)

        msg = SimpleNamespace(topic="intellirack/RACK-01/data", payload=encode({"weight": 3}))
        receiver._on_message(None, None, msg)

        (message,) = processor.enqueue.call_args.args
        assert message.device_id == "RACK-01"
        assert handler.stats.received == 1

    def test_on_message_inline_without_processor(self, handler, pipeline):
        receiver = MQTTReceiver(handler)

        receiver._on_message(None, None, SimpleNamespace(topic="intellirack/RACK-01/heartbeat", payload=b"{}"))

        pipeline.handle_heartbeat.assert_called_once()
        assert handler.stats.processed == 1

    def test_on_message_malformed(self, handler):
        processor = MagicMock()
        receiver = MQTTReceiver(handler, processor=processor)

        receiver._on_message(None, None, SimpleNamespace(topic="intellirack/RACK-01/data", payload=b"{{"))

        processor.enqueue.assert_not_called()
        assert handler.stats.malformed == 1

    def test_on_connect_subscribes_qos1(self, handler):
        receiver = MQTTReceiver(handler)
        client = MagicMock()

        receiver._on_connect(client, None, None, SimpleNamespace(is_failure=False))

        client.subscribe.assert_called_once_with("intellirack/#", qos=1)
        assert receiver.is_connected

    def test_on_connect_failure(self, handler):
        receiver = MQTTReceiver(handler)
        client = MagicMock()

        receiver._on_connect(client, None, None, SimpleNamespace(is_failure=True))

        client.subscribe.assert_not_called()
        assert not receiver.is_connected

    def test_disconnect_clears_connected(self, handler):
        receiver = MQTTReceiver(handler)
        receiver._on_connect(MagicMock(), None, None, SimpleNamespace(is_failure=False))

        receiver._on_disconnect(None, None, None, "unspecified error")

        assert not receiver.is_connected
