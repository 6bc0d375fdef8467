"""
rizzculator.engine.broker — Change-feed pub/sub
=================================================

Live queries (message threads, unread counts, presence) are built on a
tiny observer interface::

    sub = broker.subscribe("messages", callback)
    ...
    sub.unsubscribe()

Writers publish a change payload on a topic after their transaction
commits; subscribers re-run their query and push a fresh snapshot.

* :class:`InMemoryBroker` — in-process fan-out.  Used by a single API
  worker and by the tests.
* :class:`PgNotifyBridge` — relays changes between processes over
  PostgreSQL LISTEN/NOTIFY so several workers share one feed.
"""

from __future__ import annotations

import json
import logging
import random
import select as _select
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

TOPIC_MESSAGES = "messages"
TOPIC_USERS = "users"

# Allowlist of topics accepted by publish() and the NOTIFY bridge.
ALLOWED_TOPICS: frozenset[str] = frozenset({TOPIC_MESSAGES, TOPIC_USERS})

# The PG channel name used for cross-process change notifications
NOTIFY_CHANNEL = "rizz_changes"

Callback = Callable[[dict[str, Any]], None]


class Subscription:
    """Handle returned by :meth:`InMemoryBroker.subscribe`."""

    def __init__(self, broker: InMemoryBroker, topic: str, callback: Callback) -> None:
        self._broker = broker
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Stop receiving changes.  Safe to call more than once."""
        if self.active:
            self.active = False
            self._broker._remove(self)


class InMemoryBroker:
    """Thread-safe in-process topic fan-out.

    Callbacks run synchronously on the publishing thread.  A failing
    callback is logged and isolated; other subscribers still receive the
    change and the publisher never sees the error.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}
        self._forwarder: Callable[[str, dict[str, Any]], None] | None = None

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        _check_topic(topic)
        sub = Subscription(self, topic, callback)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.topic, [])
            if sub in subs:
                subs.remove(sub)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def set_forwarder(self, forwarder: Callable[[str, dict[str, Any]], None] | None) -> None:
        """Route publishes through *forwarder* (e.g. PG NOTIFY) instead of
        dispatching locally.  The forwarder's delivery path calls
        :meth:`dispatch`."""
        self._forwarder = forwarder

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        _check_topic(topic)
        if self._forwarder is not None:
            try:
                self._forwarder(topic, payload)
                return
            except Exception:
                logger.exception("Change forwarder failed — dispatching locally")
        self.dispatch(topic, payload)

    def dispatch(self, topic: str, payload: dict[str, Any]) -> None:
        """Deliver *payload* to local subscribers of *topic*."""
        with self._lock:
            subs = list(self._subscribers.get(topic, []))
        for sub in subs:
            if not sub.active:
                continue
            try:
                sub.callback(payload)
            except Exception:
                logger.exception("Subscriber callback failed on topic '%s'", topic)


def _check_topic(topic: str) -> None:
    if topic not in ALLOWED_TOPICS:
        raise ValueError(
            f"Invalid topic: '{topic}'. Allowed: {sorted(ALLOWED_TOPICS)}"
        )


# ---------------------------------------------------------------------------
# Cross-process bridge
# ---------------------------------------------------------------------------
class PgNotifyBridge:
    """Relay broker publishes through PostgreSQL LISTEN/NOTIFY.

    Usage::

        bridge = PgNotifyBridge(engine, broker)
        bridge.start()      # broker.publish() now goes via NOTIFY
        ...
        bridge.stop()
    """

    def __init__(
        self,
        engine: Engine,
        broker: InMemoryBroker,
        *,
        max_reconnect_attempts: int = 10,
    ) -> None:
        self._engine = engine
        self._broker = broker
        self._max_attempts = max_reconnect_attempts
        self._healthy = False
        self._failed = False
        self._thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    @property
    def healthy(self) -> bool:
        """True while the LISTEN thread is alive and connected."""
        return self._healthy and not self._failed

    @property
    def failed(self) -> bool:
        """True once the listener exhausted its reconnect attempts."""
        return self._failed

    def notify(self, topic: str, payload: dict[str, Any]) -> None:
        """Send one change on the NOTIFY channel (own connection)."""
        raw = json.dumps({"topic": topic, "payload": payload}, default=str)
        with self._engine.connect() as conn:
            conn.execute(
                text("SELECT pg_notify(:channel, :payload)"),
                {"channel": NOTIFY_CHANNEL, "payload": raw},
            )
            conn.commit()

    def handle_notify(self, raw_payload: str) -> None:
        """Parse one NOTIFY payload and dispatch it to local subscribers."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid change payload (not JSON): %s", raw_payload)
            return
        topic = data.get("topic") if isinstance(data, dict) else None
        if topic not in ALLOWED_TOPICS:
            logger.warning("Change payload with unknown topic: %s", raw_payload)
            return
        self._broker.dispatch(topic, data.get("payload") or {})

    def start(self) -> None:
        """Start the LISTEN thread and route broker publishes through NOTIFY.

        Reconnects with exponential backoff + jitter if the connection
        drops; gives up after ``max_reconnect_attempts`` and falls back to
        local dispatch.
        """
        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0

        def _listen_thread() -> None:
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    conn.cursor().execute(f"LISTEN {NOTIFY_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)
                    attempt = 0
                    self._healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            self.handle_notify(notify.payload or "")

                except Exception:
                    self._healthy = False
                    attempt += 1
                    if attempt >= self._max_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. Falling back to local dispatch.",
                            self._max_attempts,
                        )
                        self._failed = True
                        self._broker.set_forwarder(None)
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). Reconnecting in %.1fs…",
                        attempt, self._max_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        self._broker.set_forwarder(self.notify)
        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-change-listener")
        self._thread = thread
        thread.start()

    def stop(self) -> None:
        """Signal the listener thread to stop and restore local dispatch."""
        self._shutdown_event.set()
        self._broker.set_forwarder(None)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("PG change listener stopped")
