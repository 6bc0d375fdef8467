"""
rizzculator.api.routes.public — Read-only public endpoints
============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from rizzculator.api.deps import get_session
from rizzculator.constants import rarity_color, rarity_weight
from rizzculator.engine.achievements import ACHIEVEMENTS, total_xp_reward
from rizzculator.engine.scoring import RANK_TIERS, get_rank
from rizzculator.errors import NotFoundError
from rizzculator.services import user_service

router = APIRouter(tags=["public"])


# ---------------------------------------------------------------------------
# GET /leaderboard
# ---------------------------------------------------------------------------
@router.get("/leaderboard")
def get_leaderboard(
    country: str | None = Query(None),
    state: str | None = Query(None),
    limit: int = Query(user_service.LEADERBOARD_LIMIT, ge=1, le=user_service.LEADERBOARD_LIMIT),
    session: Session = Depends(get_session),
):
    """Top users by rizz score, optionally scoped to a country or state."""
    users = user_service.get_leaderboard(session, country=country, state=state, limit=limit)
    return [
        {"position": i, **user_service.user_dict(u)}
        for i, u in enumerate(users, start=1)
    ]


# ---------------------------------------------------------------------------
# GET /users/{user_id}
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}")
def get_profile(user_id: str, session: Session = Depends(get_session)):
    try:
        user = user_service.get_user(session, user_id)
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    data = user_service.user_dict(user, user_service.get_achievement_ids(session, user_id))
    data["leaderboardRank"] = user_service.leaderboard_position(session, user)
    return data


@router.get("/users/{user_id}/history")
def get_history(
    user_id: str,
    limit: int = Query(user_service.HISTORY_LIMIT, ge=1, le=100),
    session: Session = Depends(get_session),
):
    """Recent score history, oldest first (chart order)."""
    rows = user_service.get_score_history(session, user_id, limit)
    return [
        {
            "score": h.score,
            "type": h.type,
            "rank": h.rank,
            "timestamp": h.timestamp.isoformat() if h.timestamp else None,
        }
        for h in rows
    ]


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------
@router.get("/achievements")
def list_achievements():
    """The achievement catalog in display order."""
    return {
        "achievements": [
            {
                "id": a.id,
                "name": a.name,
                "description": a.description,
                "icon": a.icon,
                "rarity": a.rarity,
                "rarityColor": rarity_color(a.rarity),
                "rarityWeight": rarity_weight(a.rarity),
                "xpReward": a.xp_reward,
            }
            for a in ACHIEVEMENTS
        ],
        "totalXp": total_xp_reward(ACHIEVEMENTS),
    }


@router.get("/ranks")
def list_ranks():
    return [
        {
            "name": t.name,
            "emoji": t.emoji,
            "color": t.color,
            "tier": t.tier,
            "minScore": t.min_score if t.min_score != float("-inf") else 0,
        }
        for t in RANK_TIERS
    ]


@router.get("/ranks/lookup")
def lookup_rank(score: float = Query(..., ge=0, le=100)):
    tier = get_rank(score)
    return {"name": tier.name, "emoji": tier.emoji, "color": tier.color, "tier": tier.tier}
