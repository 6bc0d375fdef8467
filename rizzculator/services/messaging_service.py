"""
rizzculator.services.messaging_service — Direct Messages & Presence
=====================================================================

Writes (send, mark-read, presence) commit first and then publish a
change on the broker.  Live queries are plain subscriptions that re-run
their query on every relevant change and hand the callback a fresh
snapshot::

    sub = subscribe_thread(engine, broker, "alice", "bob", on_thread)
    ...
    sub.unsubscribe()

The callback always receives one snapshot immediately, so a client
never has to issue a separate initial fetch.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update

from rizzculator.database.engine import get_session
from rizzculator.database.models import Message, User, participant_pair
from rizzculator.engine.broker import TOPIC_MESSAGES, TOPIC_USERS, Subscription
from rizzculator.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from rizzculator.engine.broker import InMemoryBroker

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def message_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "fromUserId": message.from_user_id,
        "toUserId": message.to_user_id,
        "text": message.text,
        "read": message.read,
        "timestamp": message.timestamp.isoformat() if message.timestamp else None,
    }


def _publish_message_change(
    broker: InMemoryBroker | None,
    change: str,
    message: Message,
) -> None:
    if broker is None:
        return
    broker.publish(TOPIC_MESSAGES, {
        "change": change,
        "message_id": message.id,
        "from_user_id": message.from_user_id,
        "to_user_id": message.to_user_id,
        "participants": list(message.participants),
    })


def _touches(payload: dict[str, Any], user_id: str) -> bool:
    return user_id in (payload.get("participants") or ())


# ---------------------------------------------------------------------------
# Send / read
# ---------------------------------------------------------------------------
def send_message(
    engine: Engine,
    broker: InMemoryBroker | None,
    from_user_id: str,
    to_user_id: str,
    text: str,
    *,
    timestamp: datetime | None = None,
) -> Message:
    """Persist one direct message (``read=False``) and announce it."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message text cannot be empty.")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters.")
    if from_user_id == to_user_id:
        raise ValidationError("You can't message yourself.")

    low, high = participant_pair(from_user_id, to_user_id)
    with get_session(engine) as session:
        if session.get(User, to_user_id) is None:
            raise NotFoundError(f"User {to_user_id} not found.")
        message = Message(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            participant_low=low,
            participant_high=high,
            text=text,
            read=False,
            timestamp=timestamp or datetime.now(UTC),
        )
        session.add(message)

    logger.debug("Message %s: %s → %s", message.id, from_user_id, to_user_id)
    _publish_message_change(broker, "insert", message)
    return message


def mark_as_read(
    engine: Engine,
    broker: InMemoryBroker | None,
    message_id: int,
    viewer_id: str,
) -> bool:
    """Flip ``read`` on one inbound message.

    Returns True when the flag changed.  Already-read messages and
    messages not addressed to *viewer_id* are left alone (False).

    Raises
    ------
    NotFoundError
        If *message_id* does not exist.
    """
    with get_session(engine) as session:
        message = session.get(Message, message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found.")
        if message.to_user_id != viewer_id or message.read:
            return False
        message.read = True

    _publish_message_change(broker, "read", message)
    return True


def mark_thread_read(
    engine: Engine,
    broker: InMemoryBroker | None,
    viewer_id: str,
    counterpart_id: str,
) -> int:
    """Mark every unread message from *counterpart_id* to *viewer_id* read."""
    low, high = participant_pair(viewer_id, counterpart_id)
    with get_session(engine) as session:
        result = session.execute(
            update(Message)
            .where(
                Message.from_user_id == counterpart_id,
                Message.to_user_id == viewer_id,
                Message.read.is_(False),
            )
            .values(read=True)
        )
        changed = result.rowcount or 0

    if changed and broker is not None:
        broker.publish(TOPIC_MESSAGES, {
            "change": "read",
            "message_id": None,
            "from_user_id": counterpart_id,
            "to_user_id": viewer_id,
            "participants": [low, high],
        })
    return changed


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_thread(session: Session, viewer_id: str, counterpart_id: str) -> list[Message]:
    """All messages between exactly these two users, oldest first."""
    low, high = participant_pair(viewer_id, counterpart_id)
    return list(session.scalars(
        select(Message)
        .where(Message.participant_low == low, Message.participant_high == high)
        .order_by(Message.timestamp, Message.id)
    ).all())


def count_unread(session: Session, user_id: str) -> int:
    return session.scalar(
        select(func.count(Message.id))
        .where(Message.to_user_id == user_id, Message.read.is_(False))
    ) or 0


@dataclass(frozen=True, slots=True)
class Conversation:
    counterpart_id: str
    last_message: str
    last_timestamp: datetime
    last_from_me: bool
    unread: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "otherUserId": self.counterpart_id,
            "lastMessage": self.last_message,
            "timestamp": self.last_timestamp.isoformat(),
            "lastFromMe": self.last_from_me,
            "unread": self.unread,
        }


def list_conversations(session: Session, user_id: str) -> list[Conversation]:
    """One entry per counterpart, most recently active first.

    ``unread`` reflects the latest message *received from* that
    counterpart, so replying does not clear an unread inbound message.
    """
    rows = session.scalars(
        select(Message)
        .where(or_(Message.from_user_id == user_id, Message.to_user_id == user_id))
        .order_by(Message.timestamp.desc(), Message.id.desc())
    ).all()

    latest: dict[str, Message] = {}
    latest_inbound: dict[str, Message] = {}
    for m in rows:
        other = m.to_user_id if m.from_user_id == user_id else m.from_user_id
        latest.setdefault(other, m)
        if m.to_user_id == user_id:
            latest_inbound.setdefault(other, m)

    conversations = []
    for other, m in latest.items():
        inbound = latest_inbound.get(other)
        conversations.append(Conversation(
            counterpart_id=other,
            last_message=m.text,
            last_timestamp=m.timestamp,
            last_from_me=m.from_user_id == user_id,
            unread=inbound is not None and not inbound.read,
        ))
    # rows were already newest-first and dicts keep insertion order
    return conversations


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PresenceSnapshot:
    user_id: str
    is_online: bool
    last_seen: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "isOnline": self.is_online,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
        }


def get_presence(session: Session, user_id: str) -> PresenceSnapshot:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return PresenceSnapshot(user.id, user.is_online, user.last_seen)


def set_presence(
    engine: Engine,
    broker: InMemoryBroker | None,
    user_id: str,
    online: bool,
    *,
    now: datetime | None = None,
) -> PresenceSnapshot:
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        result = session.execute(
            update(User).where(User.id == user_id).values(is_online=online, last_seen=now)
        )
        if not result.rowcount:
            raise NotFoundError(f"User {user_id} not found.")

    logger.debug("Presence %s → %s", user_id, "online" if online else "offline")
    if broker is not None:
        broker.publish(TOPIC_USERS, {"user_id": user_id, "field": "presence"})
    return PresenceSnapshot(user_id, online, now)


class PresenceRegistry:
    """Counts live-feed connections per user in this process.

    The first connection marks the user online and only the last one to
    close marks them offline, so a second tab closing does not hide a
    user who is still connected elsewhere.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[str, int] = {}

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return self._connections.get(user_id, 0)

    def connect(
        self,
        engine: Engine,
        broker: InMemoryBroker | None,
        user_id: str,
    ) -> PresenceSnapshot:
        """Register one connection and mark the user online.

        The connection is counted even if the user has no profile
        (:class:`NotFoundError`), so every ``connect`` pairs with a
        ``disconnect``.
        """
        with self._lock:
            self._connections[user_id] = self._connections.get(user_id, 0) + 1
            return set_presence(engine, broker, user_id, True)

    def disconnect(
        self,
        engine: Engine,
        broker: InMemoryBroker | None,
        user_id: str,
    ) -> PresenceSnapshot | None:
        """Drop one connection; returns the offline snapshot if it was the last."""
        with self._lock:
            remaining = self._connections.get(user_id, 0) - 1
            if remaining > 0:
                self._connections[user_id] = remaining
                return None
            self._connections.pop(user_id, None)
            return set_presence(engine, broker, user_id, False)


# ---------------------------------------------------------------------------
# Live queries
# ---------------------------------------------------------------------------
def _live_query(
    broker: InMemoryBroker,
    topic: str,
    relevant: Callable[[dict[str, Any]], bool],
    snapshot: Callable[[], Any],
    callback: Callable[[Any], None],
) -> Subscription:
    """Subscribe, then push one snapshot now and one per relevant change.

    Changes are published from whichever thread committed them.  Each
    subscription takes its snapshot and delivers it under one lock, so a
    later delivery is never older than an earlier one.
    """
    lock = threading.Lock()

    def _refresh() -> None:
        with lock:
            callback(snapshot())

    def _on_change(payload: dict[str, Any]) -> None:
        if relevant(payload):
            _refresh()

    sub = broker.subscribe(topic, _on_change)
    _refresh()
    return sub


def subscribe_thread(
    engine: Engine,
    broker: InMemoryBroker,
    viewer_id: str,
    counterpart_id: str,
    callback: Callable[[list[Message]], None],
) -> Subscription:
    pair = list(participant_pair(viewer_id, counterpart_id))

    def _snapshot() -> list[Message]:
        with get_session(engine) as session:
            return get_thread(session, viewer_id, counterpart_id)

    return _live_query(
        broker, TOPIC_MESSAGES,
        lambda p: p.get("participants") == pair,
        _snapshot, callback,
    )


def subscribe_unread_count(
    engine: Engine,
    broker: InMemoryBroker,
    user_id: str,
    callback: Callable[[int], None],
) -> Subscription:
    def _snapshot() -> int:
        with get_session(engine) as session:
            return count_unread(session, user_id)

    return _live_query(
        broker, TOPIC_MESSAGES,
        lambda p: p.get("to_user_id") == user_id,
        _snapshot, callback,
    )


def subscribe_conversations(
    engine: Engine,
    broker: InMemoryBroker,
    user_id: str,
    callback: Callable[[list[Conversation]], None],
) -> Subscription:
    def _snapshot() -> list[Conversation]:
        with get_session(engine) as session:
            return list_conversations(session, user_id)

    return _live_query(
        broker, TOPIC_MESSAGES,
        lambda p: _touches(p, user_id),
        _snapshot, callback,
    )


def subscribe_presence(
    engine: Engine,
    broker: InMemoryBroker,
    user_id: str,
    callback: Callable[[PresenceSnapshot], None],
) -> Subscription:
    def _snapshot() -> PresenceSnapshot:
        with get_session(engine) as session:
            return get_presence(session, user_id)

    return _live_query(
        broker, TOPIC_USERS,
        lambda p: p.get("user_id") == user_id and p.get("field") == "presence",
        _snapshot, callback,
    )
