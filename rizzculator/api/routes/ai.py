"""
rizzculator.api.routes.ai — AI gateway & moderation endpoints
===============================================================

    POST /ai         — analyze content or chat (rate limited per caller)
    POST /moderate   — safety verdict for a piece of user text
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import Engine

from rizzculator.api.deps import (
    get_config,
    get_engine,
    get_gateway,
    get_optional_user_id,
)
from rizzculator.api.rate_limit import rate_limited_caller
from rizzculator.config import RizzConfig
from rizzculator.database.engine import run_db
from rizzculator.engine.moderation import ModerationFilter
from rizzculator.engine.scoring import AnalyzerKind, parse_kind
from rizzculator.errors import NotFoundError
from rizzculator.services.ai_gateway import BAD_REQUEST, AIGateway, AIGatewayError
from rizzculator.services.scan_service import evaluate_achievements
from rizzculator.services.user_service import increment_ai_conversations

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ai"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AIRequest(BaseModel):
    messages: Any = None
    type: str | None = None
    userProfile: dict | None = None


class ModerateRequest(BaseModel):
    content: Any = None


def gateway_http_error(exc: AIGatewayError, debug: bool = False) -> HTTPException:
    """Map a gateway failure to its HTTP status and user-facing message."""
    detail: dict[str, Any] = {"error": exc.category, "message": exc.user_message}
    if debug and exc.detail:
        detail["details"] = exc.detail
    return HTTPException(status_code=exc.status_code, detail=detail)


# ---------------------------------------------------------------------------
# POST /ai
# ---------------------------------------------------------------------------
@router.post("/ai")
async def ai_request(
    body: AIRequest,
    caller_id: str = Depends(rate_limited_caller),
    user_id: str | None = Depends(get_optional_user_id),
    gateway: AIGateway = Depends(get_gateway),
    engine: Engine = Depends(get_engine),
    cfg: RizzConfig = Depends(get_config),
):
    """Forward an analysis or chat request to the language model.

    Returns ``{"message": str, "scores"?: {"overall": float}}``.
    """
    if not isinstance(body.messages, list) or not body.messages:
        raise gateway_http_error(AIGatewayError(BAD_REQUEST, "messages must be a non-empty list"))

    kind = parse_kind(body.type)
    try:
        reply = await gateway.analyze(kind, body.messages, body.userProfile)
    except AIGatewayError as exc:
        logger.error("AI request from %s failed (%s): %s", caller_id, exc.category, exc.detail)
        raise gateway_http_error(exc, cfg.debug)

    if kind is AnalyzerKind.AI_CHAT and user_id is not None:
        await run_db(increment_ai_conversations, engine, user_id)
        try:
            await run_db(
                evaluate_achievements, engine, user_id, grant_xp=cfg.grant_achievement_xp,
            )
        except NotFoundError:
            logger.debug("Chat caller %s has no profile; skipping achievement check", user_id)
    return reply


# ---------------------------------------------------------------------------
# POST /moderate
# ---------------------------------------------------------------------------
@router.post("/moderate")
async def moderate(
    body: ModerateRequest,
    gateway: AIGateway = Depends(get_gateway),
    cfg: RizzConfig = Depends(get_config),
):
    """Return ``{safe, reason, content}`` for the submitted text."""
    content = body.content
    if not isinstance(content, str) or not content:
        raise HTTPException(400, {"error": "invalid_content", "message": "Content is required"})

    try:
        result = await ModerationFilter(gateway, use_ai=cfg.ai_moderation).check(content)
    except Exception:
        logger.exception("Moderation failed — allowing content")
        return JSONResponse(
            status_code=500,
            content={"safe": True, "reason": None, "content": content, "error": "Moderation failed"},
        )
    return result.to_dict()
