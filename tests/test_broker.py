"""
tests/test_broker.py — Change-Feed Broker Unit Tests
======================================================

In-process fan-out, subscriber isolation, topic allowlist, and NOTIFY
payload routing (without a real PG connection).
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from rizzculator.engine.broker import (
    NOTIFY_CHANNEL,
    TOPIC_MESSAGES,
    TOPIC_USERS,
    InMemoryBroker,
    PgNotifyBridge,
)


class TestInMemoryBroker:
    def test_publish_reaches_topic_subscribers_only(self, broker):
        got_messages, got_users = [], []
        broker.subscribe(TOPIC_MESSAGES, got_messages.append)
        broker.subscribe(TOPIC_USERS, got_users.append)

        broker.publish(TOPIC_MESSAGES, {"n": 1})
        assert got_messages == [{"n": 1}]
        assert got_users == []

    def test_unsubscribe_is_idempotent(self, broker):
        got = []
        sub = broker.subscribe(TOPIC_MESSAGES, got.append)
        sub.unsubscribe()
        sub.unsubscribe()
        broker.publish(TOPIC_MESSAGES, {"n": 1})
        assert got == []
        assert broker.subscriber_count(TOPIC_MESSAGES) == 0

    def test_failing_subscriber_is_isolated(self, broker):
        got = []

        def _boom(payload):
            raise RuntimeError("subscriber bug")

        broker.subscribe(TOPIC_MESSAGES, _boom)
        broker.subscribe(TOPIC_MESSAGES, got.append)
        broker.publish(TOPIC_MESSAGES, {"n": 2})
        assert got == [{"n": 2}]

    def test_unknown_topic_rejected(self, broker):
        with pytest.raises(ValueError, match="Invalid topic"):
            broker.publish("users; DROP TABLE users", {})
        with pytest.raises(ValueError):
            broker.subscribe("nope", print)

    def test_forwarder_replaces_local_dispatch(self, broker):
        got, forwarded = [], []
        broker.subscribe(TOPIC_USERS, got.append)
        broker.set_forwarder(lambda topic, payload: forwarded.append((topic, payload)))
        broker.publish(TOPIC_USERS, {"user_id": "a"})
        assert forwarded == [(TOPIC_USERS, {"user_id": "a"})]
        assert got == []

    def test_failing_forwarder_falls_back_to_local(self, broker):
        got = []
        broker.subscribe(TOPIC_USERS, got.append)
        broker.set_forwarder(MagicMock(side_effect=ConnectionError("pg down")))
        broker.publish(TOPIC_USERS, {"user_id": "a"})
        assert got == [{"user_id": "a"}]


class TestPgNotifyBridge:
    @pytest.fixture
    def bridge(self, broker):
        return PgNotifyBridge(MagicMock(), broker)

    def test_handle_notify_dispatches(self, bridge, broker):
        got = []
        broker.subscribe(TOPIC_MESSAGES, got.append)
        bridge.handle_notify(json.dumps({"topic": TOPIC_MESSAGES, "payload": {"message_id": 5}}))
        assert got == [{"message_id": 5}]

    @pytest.mark.parametrize(
        "raw",
        ["not json", json.dumps(["a"]), json.dumps({"topic": "channels", "payload": {}}), ""],
    )
    def test_bad_payloads_ignored(self, bridge, broker, raw):
        got = []
        broker.subscribe(TOPIC_MESSAGES, got.append)
        bridge.handle_notify(raw)
        assert got == []

    def test_notify_uses_parameterized_pg_notify(self, broker):
        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value
        bridge = PgNotifyBridge(engine, broker)

        bridge.notify(TOPIC_USERS, {"user_id": "a"})

        stmt, params = conn.execute.call_args.args
        assert "pg_notify" in str(stmt)
        assert params["channel"] == NOTIFY_CHANNEL
        assert json.loads(params["payload"]) == {"topic": TOPIC_USERS, "payload": {"user_id": "a"}}
        conn.commit.assert_called_once()

    def test_health_flags(self, bridge):
        assert not bridge.healthy
        assert not bridge.failed

    def test_stop_restores_local_dispatch(self, bridge, broker):
        with patch("threading.Thread"):
            bridge.start()
        assert broker._forwarder is not None
        bridge.stop()
        assert broker._forwarder is None
