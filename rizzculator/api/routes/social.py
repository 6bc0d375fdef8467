"""
rizzculator.api.routes.social — Profile, login, upvote & scan endpoints
=========================================================================

    POST   /users                 — create the caller's profile at signup
    POST   /users/me/login        — daily streak update
    PUT    /users/me/bio          — moderated bio update
    POST   /users/{id}/upvote     — one upvote per (voter, target)
    POST   /scans                 — run a full scan for the caller
    DELETE /scans/current         — cancel the caller's in-flight scan
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from rizzculator.api.deps import (
    get_broker,
    get_config,
    get_current_user_id,
    get_engine,
    get_gateway,
    get_scan_tracker,
)
from rizzculator.api.rate_limit import rate_limited_caller
from rizzculator.api.routes.ai import gateway_http_error
from rizzculator.config import RizzConfig
from rizzculator.database.engine import run_db
from rizzculator.engine.broker import InMemoryBroker
from rizzculator.engine.moderation import ModerationFilter
from rizzculator.engine.scoring import parse_kind
from rizzculator.engine.streak import StreakStatus
from rizzculator.errors import AlreadyDoneError, NotFoundError, StaleScanError, ValidationError
from rizzculator.services import scan_service, user_service
from rizzculator.services.ai_gateway import AIGateway, AIGatewayError
from rizzculator.services.scan_service import ScanRequestTracker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["social"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ProfileCreate(BaseModel):
    username: str
    country: str | None = None
    state: str | None = None


class BioUpdate(BaseModel):
    bio: str = Field(max_length=500)


class ScanRequest(BaseModel):
    type: str
    messages: list[dict[str, Any]] = Field(min_length=1)
    userProfile: dict | None = None


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
@router.post("/users", status_code=201)
async def create_profile(
    body: ProfileCreate,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    try:
        user = await run_db(
            user_service.create_user, engine, user_id, body.username,
            country=body.country, state=body.state,
        )
    except ValidationError as exc:
        raise HTTPException(400, {"error": "invalid_profile", "message": str(exc)})
    except AlreadyDoneError as exc:
        raise HTTPException(409, {"error": "profile_exists", "message": str(exc)})
    return user_service.user_dict(user, set())


@router.post("/users/me/login")
async def login(
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
    cfg: RizzConfig = Depends(get_config),
):
    """Record today's login and return the updated streak."""
    try:
        result = await run_db(user_service.record_login, engine, user_id)
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))

    unlocked = []
    if result.update.status is StreakStatus.CONSECUTIVE:
        unlocked = await run_db(
            scan_service.evaluate_achievements, engine, user_id,
            grant_xp=cfg.grant_achievement_xp,
        )
    return {
        "status": result.update.status.value,
        "isNewDay": result.update.is_new_day,
        "loginStreak": result.login_streak,
        "achievementsUnlocked": [a.id for a in unlocked],
    }


@router.put("/users/me/bio")
async def update_bio(
    body: BioUpdate,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
    gateway: AIGateway = Depends(get_gateway),
    cfg: RizzConfig = Depends(get_config),
):
    verdict = await ModerationFilter(gateway, use_ai=cfg.ai_moderation).check(body.bio)
    if not verdict.safe:
        raise HTTPException(400, {"error": "content_flagged", "message": verdict.reason})
    try:
        await run_db(user_service.update_bio, engine, user_id, body.bio)
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    return {"bio": body.bio}


# ---------------------------------------------------------------------------
# Upvotes
# ---------------------------------------------------------------------------
@router.post("/users/{target_id}/upvote")
async def upvote_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
    broker: InMemoryBroker = Depends(get_broker),
    cfg: RizzConfig = Depends(get_config),
):
    try:
        count = await run_db(user_service.upvote, engine, user_id, target_id, broker)
    except AlreadyDoneError:
        return {"status": "already_upvoted"}
    except ValidationError as exc:
        raise HTTPException(400, {"error": "invalid_upvote", "message": str(exc)})
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))

    await run_db(
        scan_service.evaluate_achievements, engine, target_id,
        grant_xp=cfg.grant_achievement_xp,
    )
    return {"status": "upvoted", "upvotes": count}


# ---------------------------------------------------------------------------
# Scans
# ---------------------------------------------------------------------------
@router.post("/scans")
async def create_scan(
    body: ScanRequest,
    user_id: str = Depends(rate_limited_caller),
    engine: Engine = Depends(get_engine),
    broker: InMemoryBroker = Depends(get_broker),
    gateway: AIGateway = Depends(get_gateway),
    tracker: ScanRequestTracker = Depends(get_scan_tracker),
    cfg: RizzConfig = Depends(get_config),
):
    """Analyze, score and persist one scan for the authenticated caller."""
    if user_id.startswith("anon:"):
        raise HTTPException(401, "Missing token")

    try:
        outcome = await scan_service.run_scan(
            engine, gateway, tracker, user_id, parse_kind(body.type), body.messages,
            broker=broker,
            user_profile=body.userProfile,
            grant_achievement_xp=cfg.grant_achievement_xp,
        )
    except ValidationError as exc:
        raise HTTPException(400, {"error": "invalid_scan", "message": str(exc)})
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    except StaleScanError as exc:
        raise HTTPException(409, {"error": "scan_cancelled", "message": str(exc)})
    except AIGatewayError as exc:
        logger.error("Scan for %s failed (%s): %s", user_id, exc.category, exc.detail)
        raise gateway_http_error(exc, cfg.debug)
    return outcome.to_dict()


@router.delete("/scans/current")
def cancel_scan(
    user_id: str = Depends(get_current_user_id),
    tracker: ScanRequestTracker = Depends(get_scan_tracker),
):
    return {"cancelled": tracker.cancel(user_id)}
