"""
rizzculator.api.routes.messages — Direct messages, conversations & live feed
==============================================================================

REST:
    POST /messages                     — send a DM (moderated)
    GET  /messages/unread/count        — unread inbound messages
    GET  /messages/{counterpart}       — thread with one user, oldest first
    POST /messages/{message_id}/read   — mark one inbound message read
    POST /messages/{counterpart}/read-all
    GET  /conversations                — one entry per counterpart

WebSocket ``/ws?token=<jwt>``:
    Client -> Server:
        {"action": "subscribe", "channel": "thread", "counterpart": "<id>"}
        {"action": "subscribe", "channel": "unread"}
        {"action": "subscribe", "channel": "conversations"}
        {"action": "subscribe", "channel": "presence", "user_id": "<id>"}
        {"action": "unsubscribe", "channel": ..., ...same keys...}
        {"action": "ping"}

    Server -> Client:
        {"channel": "thread", "key": "thread:<id>", "data": [...]}
        {"type": "subscribed" | "unsubscribed", "channel": ..., "key": ...}
        {"type": "pong"}
        {"type": "error", "message": "..."}

A user is online while at least one of their sockets is open. The last
socket to close (cleanly or not) marks them offline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from rizzculator.api.deps import (
    decode_token,
    get_broker,
    get_config,
    get_current_user_id,
    get_engine,
    get_gateway,
    get_presence_registry,
    get_session,
)
from rizzculator.config import RizzConfig
from rizzculator.database.engine import run_db
from rizzculator.engine.broker import InMemoryBroker, Subscription
from rizzculator.engine.moderation import ModerationFilter
from rizzculator.errors import NotFoundError, ValidationError
from rizzculator.services import messaging_service, scan_service
from rizzculator.services.ai_gateway import AIGateway
from rizzculator.services.messaging_service import PresenceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


class MessageCreate(BaseModel):
    to: str
    text: str


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------
@router.post("/messages", status_code=201)
async def send_message(
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
    broker: InMemoryBroker = Depends(get_broker),
    gateway: AIGateway = Depends(get_gateway),
    cfg: RizzConfig = Depends(get_config),
):
    verdict = await ModerationFilter(gateway, use_ai=cfg.ai_moderation).check(body.text)
    if not verdict.safe:
        raise HTTPException(400, {"error": "content_flagged", "message": verdict.reason})

    try:
        message = await run_db(
            messaging_service.send_message, engine, broker, user_id, body.to, body.text,
        )
    except ValidationError as exc:
        raise HTTPException(400, {"error": "invalid_message", "message": str(exc)})
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))

    try:
        await run_db(
            scan_service.evaluate_achievements, engine, user_id,
            grant_xp=cfg.grant_achievement_xp,
        )
    except NotFoundError:
        logger.debug("Sender %s has no profile; skipping achievement check", user_id)
    return messaging_service.message_dict(message)


@router.get("/messages/unread/count")
def unread_count(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    return {"count": messaging_service.count_unread(session, user_id)}


@router.get("/messages/{counterpart_id}")
def get_thread(
    counterpart_id: str,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    return [
        messaging_service.message_dict(m)
        for m in messaging_service.get_thread(session, user_id, counterpart_id)
    ]


@router.post("/messages/{message_id}/read")
async def mark_read(
    message_id: int,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
    broker: InMemoryBroker = Depends(get_broker),
):
    try:
        changed = await run_db(messaging_service.mark_as_read, engine, broker, message_id, user_id)
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    return {"changed": changed}


@router.post("/messages/{counterpart_id}/read-all")
async def mark_thread_read(
    counterpart_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
    broker: InMemoryBroker = Depends(get_broker),
):
    changed = await run_db(
        messaging_service.mark_thread_read, engine, broker, user_id, counterpart_id,
    )
    return {"changed": changed}


@router.get("/conversations")
def list_conversations(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    return [c.to_dict() for c in messaging_service.list_conversations(session, user_id)]


# ---------------------------------------------------------------------------
# WebSocket live feed
# ---------------------------------------------------------------------------
CHANNELS = frozenset({"thread", "unread", "conversations", "presence"})


def channel_key(user_id: str, msg: dict[str, Any]) -> str:
    """Subscription key for one client request.  Raises ValueError."""
    channel = msg.get("channel", "")
    if channel not in CHANNELS:
        raise ValueError(f"Invalid channel: {channel}")
    if channel == "thread":
        counterpart = msg.get("counterpart")
        if not counterpart or counterpart == user_id:
            raise ValueError("thread needs a counterpart other than yourself")
        return f"thread:{counterpart}"
    if channel == "presence":
        target = msg.get("user_id")
        if not target:
            raise ValueError("presence needs a user_id")
        return f"presence:{target}"
    return channel


class LiveFeed:
    """Subscriptions held by one websocket connection.

    Broker callbacks fire on whichever thread committed the change; they
    only enqueue onto the connection's event loop, and a single sender
    task writes to the socket.
    """

    def __init__(
        self,
        websocket: WebSocket,
        engine: Engine,
        broker: InMemoryBroker,
        user_id: str,
    ) -> None:
        self.websocket = websocket
        self.engine = engine
        self.broker = broker
        self.user_id = user_id
        self.subscriptions: dict[str, Subscription] = {}
        self._loop = asyncio.get_running_loop()
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def _push(self, channel: str, key: str, render: Callable[[Any], Any]) -> Callable[[Any], None]:
        def _callback(snapshot: Any) -> None:
            event = {"channel": channel, "key": key, "data": render(snapshot)}
            self._loop.call_soon_threadsafe(self._outbox.put_nowait, event)
        return _callback

    def _open(self, key: str) -> Subscription:
        engine, broker, uid = self.engine, self.broker, self.user_id
        kind, _, arg = key.partition(":")
        if kind == "thread":
            return messaging_service.subscribe_thread(
                engine, broker, uid, arg,
                self._push(kind, key, lambda ms: [messaging_service.message_dict(m) for m in ms]),
            )
        if kind == "unread":
            return messaging_service.subscribe_unread_count(
                engine, broker, uid, self._push(kind, key, lambda n: {"count": n}),
            )
        if kind == "conversations":
            return messaging_service.subscribe_conversations(
                engine, broker, uid,
                self._push(kind, key, lambda cs: [c.to_dict() for c in cs]),
            )
        return messaging_service.subscribe_presence(
            engine, broker, arg, self._push(kind, key, lambda p: p.to_dict()),
        )

    async def subscribe(self, key: str) -> None:
        if key in self.subscriptions:
            return
        self.subscriptions[key] = await run_db(self._open, key)

    def unsubscribe(self, key: str) -> None:
        sub = self.subscriptions.pop(key, None)
        if sub is not None:
            sub.unsubscribe()

    def close(self) -> None:
        for key in list(self.subscriptions):
            self.unsubscribe(key)

    async def send(self, event: dict[str, Any]) -> None:
        await self._outbox.put(event)

    async def pump(self) -> None:
        """Forward queued events to the socket until cancelled."""
        while True:
            event = await self._outbox.get()
            await self.websocket.send_json(event)


async def _handle(feed: LiveFeed, msg: dict[str, Any]) -> None:
    action = msg.get("action")
    if action == "ping":
        await feed.send({"type": "pong"})
        return
    if action not in ("subscribe", "unsubscribe"):
        await feed.send({"type": "error", "message": f"Unknown action: {action}"})
        return

    try:
        key = channel_key(feed.user_id, msg)
    except ValueError as exc:
        await feed.send({"type": "error", "message": str(exc)})
        return

    channel = key.partition(":")[0]
    if action == "subscribe":
        try:
            await feed.subscribe(key)
        except NotFoundError as exc:
            await feed.send({"type": "error", "message": str(exc)})
            return
        await feed.send({"type": "subscribed", "channel": channel, "key": key})
    else:
        feed.unsubscribe(key)
        await feed.send({"type": "unsubscribed", "channel": channel, "key": key})


@router.websocket("/ws")
async def live_feed(
    websocket: WebSocket,
    token: str = Query(...),
    engine: Engine = Depends(get_engine),
    broker: InMemoryBroker = Depends(get_broker),
    registry: PresenceRegistry = Depends(get_presence_registry),
) -> None:
    try:
        user_id = str(decode_token(token)["sub"])
    except InvalidTokenError as exc:
        await websocket.close(code=4001, reason=f"Authentication failed: {exc}")
        return

    await websocket.accept()
    feed = LiveFeed(websocket, engine, broker, user_id)
    pump = asyncio.create_task(feed.pump())
    try:
        await run_db(registry.connect, engine, broker, user_id)
    except NotFoundError:
        logger.debug("Live feed for %s without a profile; presence not tracked", user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await feed.send({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await feed.send({"type": "error", "message": "Expected a JSON object"})
                continue
            await _handle(feed, msg)
    except WebSocketDisconnect:
        logger.debug("Live feed closed for %s", user_id)
    except Exception:
        logger.exception("Live feed error for %s", user_id)
    finally:
        feed.close()
        pump.cancel()
        try:
            await run_db(registry.disconnect, engine, broker, user_id)
        except NotFoundError:
            logger.debug("No profile for %s; presence not tracked", user_id)
