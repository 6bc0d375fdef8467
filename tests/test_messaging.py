"""
tests/test_messaging.py — Direct Messages, Presence & Live Queries
====================================================================
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from rizzculator.engine.broker import TOPIC_MESSAGES
from rizzculator.errors import NotFoundError, ValidationError
from rizzculator.services import messaging_service as ms
from rizzculator.services import user_service

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def pair(make_user):
    make_user("alice")
    make_user("bob")
    make_user("carol")


def _send(engine, broker, frm, to, text, minutes=0):
    return ms.send_message(engine, broker, frm, to, text, timestamp=T0 + timedelta(minutes=minutes))


class TestSendMessage:
    def test_send_persists_unread(self, db_engine, broker, pair):
        published = []
        broker.subscribe(TOPIC_MESSAGES, published.append)

        msg = ms.send_message(db_engine, broker, "bob", "alice", "  hey  ")
        assert msg.text == "hey"
        assert msg.read is False
        assert published == [{
            "change": "insert",
            "message_id": msg.id,
            "from_user_id": "bob",
            "to_user_id": "alice",
            "participants": ["alice", "bob"],
        }]

    @pytest.mark.parametrize("text", ["", "   ", "x" * (ms.MAX_MESSAGE_LENGTH + 1)])
    def test_invalid_text(self, db_engine, broker, pair, text):
        with pytest.raises(ValidationError):
            ms.send_message(db_engine, broker, "alice", "bob", text)

    def test_self_message_rejected(self, db_engine, broker, pair):
        with pytest.raises(ValidationError):
            ms.send_message(db_engine, broker, "alice", "alice", "me")

    def test_unknown_recipient(self, db_engine, broker, pair):
        with pytest.raises(NotFoundError):
            ms.send_message(db_engine, broker, "alice", "ghost", "hello?")

    def test_message_dict(self, db_engine, broker, pair):
        msg = _send(db_engine, broker, "alice", "bob", "hi")
        data = ms.message_dict(msg)
        assert data["fromUserId"] == "alice"
        assert data["toUserId"] == "bob"
        assert data["read"] is False
        assert data["timestamp"].startswith("2026-03-01T12:00")


class TestThread:
    def test_thread_is_both_directions_oldest_first(self, db_engine, broker, pair):
        _send(db_engine, broker, "bob", "alice", "second", minutes=2)
        _send(db_engine, broker, "alice", "bob", "first", minutes=1)
        _send(db_engine, broker, "alice", "carol", "elsewhere", minutes=3)

        with Session(db_engine) as session:
            texts = [m.text for m in ms.get_thread(session, "alice", "bob")]
            assert texts == ["first", "second"]
            assert [m.text for m in ms.get_thread(session, "bob", "alice")] == texts

    def test_same_timestamp_falls_back_to_id(self, db_engine, broker, pair):
        _send(db_engine, broker, "alice", "bob", "a")
        _send(db_engine, broker, "bob", "alice", "b")
        with Session(db_engine) as session:
            assert [m.text for m in ms.get_thread(session, "alice", "bob")] == ["a", "b"]


class TestReadState:
    def test_mark_as_read_only_by_recipient(self, db_engine, broker, pair):
        msg = _send(db_engine, broker, "bob", "alice", "yo")
        assert ms.mark_as_read(db_engine, broker, msg.id, "bob") is False
        assert ms.mark_as_read(db_engine, broker, msg.id, "alice") is True
        assert ms.mark_as_read(db_engine, broker, msg.id, "alice") is False

    def test_mark_unknown_message(self, db_engine, broker):
        with pytest.raises(NotFoundError):
            ms.mark_as_read(db_engine, broker, 999, "alice")

    def test_unread_count(self, db_engine, broker, pair):
        _send(db_engine, broker, "bob", "alice", "1")
        _send(db_engine, broker, "carol", "alice", "2")
        _send(db_engine, broker, "alice", "bob", "mine")
        with Session(db_engine) as session:
            assert ms.count_unread(session, "alice") == 2
            assert ms.count_unread(session, "bob") == 1

    def test_mark_thread_read(self, db_engine, broker, pair):
        _send(db_engine, broker, "bob", "alice", "1")
        _send(db_engine, broker, "bob", "alice", "2")
        _send(db_engine, broker, "carol", "alice", "3")

        assert ms.mark_thread_read(db_engine, broker, "alice", "bob") == 2
        assert ms.mark_thread_read(db_engine, broker, "alice", "bob") == 0
        with Session(db_engine) as session:
            assert ms.count_unread(session, "alice") == 1


class TestConversations:
    def test_newest_first_with_last_message(self, db_engine, broker, pair):
        _send(db_engine, broker, "bob", "alice", "from bob", minutes=1)
        _send(db_engine, broker, "alice", "carol", "to carol", minutes=2)

        with Session(db_engine) as session:
            convos = ms.list_conversations(session, "alice")
        assert [c.counterpart_id for c in convos] == ["carol", "bob"]
        assert convos[0].last_from_me is True
        assert convos[0].unread is False
        assert convos[1].last_message == "from bob"
        assert convos[1].unread is True

    def test_reply_does_not_clear_unread(self, db_engine, broker, pair):
        _send(db_engine, broker, "bob", "alice", "ping", minutes=1)
        _send(db_engine, broker, "alice", "bob", "pong", minutes=2)

        with Session(db_engine) as session:
            (convo,) = ms.list_conversations(session, "alice")
        assert convo.last_message == "pong"
        assert convo.unread is True

        ms.mark_thread_read(db_engine, broker, "alice", "bob")
        with Session(db_engine) as session:
            (convo,) = ms.list_conversations(session, "alice")
        assert convo.unread is False
        assert convo.to_dict()["otherUserId"] == "bob"


class TestPresence:
    def test_set_and_get(self, db_engine, broker, pair):
        snap = ms.set_presence(db_engine, broker, "alice", True, now=T0)
        assert snap.to_dict() == {"userId": "alice", "isOnline": True, "lastSeen": T0.isoformat()}

        ms.set_presence(db_engine, broker, "alice", False, now=T0 + timedelta(minutes=5))
        with Session(db_engine) as session:
            presence = ms.get_presence(session, "alice")
        assert presence.is_online is False
        assert presence.last_seen.replace(tzinfo=UTC) == T0 + timedelta(minutes=5)

    def test_unknown_user(self, db_engine, broker):
        with pytest.raises(NotFoundError):
            ms.set_presence(db_engine, broker, "ghost", True)


class TestPresenceRegistry:
    def test_second_connection_keeps_user_online(self, db_engine, broker, pair):
        registry = ms.PresenceRegistry()
        registry.connect(db_engine, broker, "alice")
        registry.connect(db_engine, broker, "alice")
        assert registry.connection_count("alice") == 2

        assert registry.disconnect(db_engine, broker, "alice") is None
        with Session(db_engine) as session:
            assert ms.get_presence(session, "alice").is_online is True

        snap = registry.disconnect(db_engine, broker, "alice")
        assert snap.is_online is False
        assert registry.connection_count("alice") == 0
        with Session(db_engine) as session:
            assert ms.get_presence(session, "alice").is_online is False

    def test_unknown_user_still_balanced(self, db_engine, broker):
        registry = ms.PresenceRegistry()
        with pytest.raises(NotFoundError):
            registry.connect(db_engine, broker, "ghost")
        assert registry.connection_count("ghost") == 1
        with pytest.raises(NotFoundError):
            registry.disconnect(db_engine, broker, "ghost")
        assert registry.connection_count("ghost") == 0

    def test_reconnect_between_closes(self, db_engine, broker, pair):
        registry = ms.PresenceRegistry()
        seen = []
        ms.subscribe_presence(db_engine, broker, "bob", lambda p: seen.append(p.is_online))

        registry.connect(db_engine, broker, "bob")
        registry.connect(db_engine, broker, "bob")
        registry.disconnect(db_engine, broker, "bob")
        registry.connect(db_engine, broker, "bob")
        registry.disconnect(db_engine, broker, "bob")
        assert seen[-1] is True


class TestLiveQueries:
    def test_thread_subscription(self, db_engine, broker, pair):
        snapshots = []
        sub = ms.subscribe_thread(
            db_engine, broker, "alice", "bob",
            lambda msgs: snapshots.append([m.text for m in msgs]),
        )
        assert snapshots == [[]]

        _send(db_engine, broker, "bob", "alice", "hi", minutes=1)
        _send(db_engine, broker, "alice", "carol", "unrelated", minutes=2)
        assert snapshots == [[], ["hi"]]

        sub.unsubscribe()
        _send(db_engine, broker, "alice", "bob", "after", minutes=3)
        assert len(snapshots) == 2

    def test_unread_count_subscription(self, db_engine, broker, pair):
        counts = []
        ms.subscribe_unread_count(db_engine, broker, "alice", counts.append)

        msg = _send(db_engine, broker, "bob", "alice", "hi")
        _send(db_engine, broker, "alice", "bob", "outbound")
        ms.mark_as_read(db_engine, broker, msg.id, "alice")
        assert counts == [0, 1, 0]

    def test_conversations_subscription(self, db_engine, broker, pair):
        seen = []
        ms.subscribe_conversations(
            db_engine, broker, "carol",
            lambda convos: seen.append([c.counterpart_id for c in convos]),
        )
        _send(db_engine, broker, "alice", "bob", "not for carol")
        _send(db_engine, broker, "bob", "carol", "hey carol")
        assert seen == [[], ["bob"]]

    def test_presence_subscription(self, db_engine, broker, pair):
        seen = []
        ms.subscribe_presence(db_engine, broker, "bob", lambda p: seen.append(p.is_online))
        ms.set_presence(db_engine, broker, "alice", True)
        ms.set_presence(db_engine, broker, "bob", True)
        ms.set_presence(db_engine, broker, "bob", False)
        assert seen == [False, True, False]

    def test_overlapping_changes_deliver_in_order(self, file_engine, broker):
        for uid in ("alice", "bob"):
            user_service.create_user(file_engine, uid, uid)
        snapshots = []
        second_send = threading.Thread(
            target=_send, args=(file_engine, broker, "bob", "alice", "m2", 2),
        )

        def on_thread(msgs):
            texts = [m.text for m in msgs]
            if texts == ["m1"] and second_send.ident is None:
                # A newer change commits and publishes while this one is
                # still being delivered.
                second_send.start()
                second_send.join(timeout=0.3)
            snapshots.append(texts)

        ms.subscribe_thread(file_engine, broker, "alice", "bob", on_thread)
        _send(file_engine, broker, "alice", "bob", "m1", 1)
        second_send.join(timeout=10)

        assert snapshots[0] == []
        assert snapshots[-1] == ["m1", "m2"]
        assert snapshots == sorted(snapshots, key=len)
