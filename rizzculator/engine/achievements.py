"""
rizzculator.engine.achievements — Achievement Check Pipeline
=============================================================

Handler-registry implementation for achievement unlock evaluation.
Each catalog entry maps to a pure predicate that receives an
:class:`AchievementContext` (the user's cumulative stat snapshot).

This module is pure calculation — no database I/O.  The caller persists
the union of old and new achievement ids and grants any XP reward.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from rizzculator.engine.scoring import SCAN_FAMILIES

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Achievement:
    """Static, read-only badge definition."""

    id: str
    name: str
    description: str
    icon: str
    rarity: str
    xp_reward: int


# Declared order is evaluation and return order.
ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement("first_scan", "Getting Started", "Complete your first rizz scan",
                "\U0001f3af", "common", 10),
    Achievement("rizz_god", "Rizz God Status", "Achieve a score of 95 or higher",
                "\U0001f525", "legendary", 100),
    Achievement("top_10", "Top 10", "Reach top 10 on global leaderboard",
                "\U0001f3c6", "epic", 75),
    Achievement("social_butterfly", "Social Butterfly", "Send 50 messages",
                "\U0001f98b", "rare", 30),
    Achievement("upvote_king", "Community Favorite", "Receive 100 upvotes",
                "\U0001f451", "epic", 50),
    Achievement("streak_7", "Weekly Warrior", "7-day login streak",
                "\U0001f525", "rare", 40),
    Achievement("streak_30", "Rizz Veteran", "30-day login streak",
                "\U0001f48e", "legendary", 150),
    Achievement("all_analyzers", "Jack of All Trades", "Try all 5 analyzer types",
                "\U0001f3a8", "rare", 35),
    Achievement("perfect_score", "Flawless", "Get a perfect 100 score",
                "\U0001f4af", "mythic", 200),
    Achievement("chat_master", "Chat Master", "Have 100 AI conversations",
                "\U0001f4ac", "epic", 60),
)

ACHIEVEMENTS_BY_ID: dict[str, Achievement] = {a.id: a for a in ACHIEVEMENTS}


def get_achievement(achievement_id: str) -> Achievement | None:
    return ACHIEVEMENTS_BY_ID.get(achievement_id)


def total_xp_reward(achievements: Iterable[Achievement]) -> int:
    return sum(a.xp_reward for a in achievements)


# ---------------------------------------------------------------------------
# Achievement Context: passed to every predicate
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AchievementContext:
    """Snapshot of a user's cumulative stats.

    Parameters
    ----------
    total_scans : Completed analyses (score history length).
    highest_score : Best rizz score ever recorded.
    login_streak : Current consecutive-day login streak.
    upvotes_received : Upvotes on the user's profile.
    messages_sent : Direct messages sent.
    analyzers_used : Distinct analyzer families tried.
    ai_conversations : Conversational AI exchanges.
    leaderboard_rank : 1-based position on the global board, None if unranked.
    """

    total_scans: int = 0
    highest_score: float = 0.0
    login_streak: int = 0
    upvotes_received: int = 0
    messages_sent: int = 0
    analyzers_used: int = 0
    ai_conversations: int = 0
    leaderboard_rank: int | None = None


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------
def _in_top_10(ctx: AchievementContext) -> bool:
    return ctx.leaderboard_rank is not None and 1 <= ctx.leaderboard_rank <= 10


UNLOCK_PREDICATES: dict[str, Callable[[AchievementContext], bool]] = {
    "first_scan": lambda ctx: ctx.total_scans >= 1,
    "rizz_god": lambda ctx: ctx.highest_score >= 95,
    "top_10": _in_top_10,
    "social_butterfly": lambda ctx: ctx.messages_sent >= 50,
    "upvote_king": lambda ctx: ctx.upvotes_received >= 100,
    # Both streak badges are checked every time; neither implies the other.
    "streak_7": lambda ctx: ctx.login_streak >= 7,
    "streak_30": lambda ctx: ctx.login_streak >= 30,
    "all_analyzers": lambda ctx: ctx.analyzers_used >= len(SCAN_FAMILIES),
    # 100 is the score ceiling, so equality is the only way to reach it.
    "perfect_score": lambda ctx: ctx.highest_score == 100,
    "chat_master": lambda ctx: ctx.ai_conversations >= 100,
}


# ---------------------------------------------------------------------------
# Main check function
# ---------------------------------------------------------------------------
def check_achievements(
    ctx: AchievementContext,
    already_unlocked: Iterable[str],
) -> list[Achievement]:
    """Return every newly qualified achievement, in catalog order.

    Parameters
    ----------
    ctx : AchievementContext with the user's current stats.
    already_unlocked : Achievement ids the user already holds.

    Returns
    -------
    All achievements whose predicate holds and that are not already
    unlocked.  Callers presenting one at a time still receive the full
    list so none is skipped.
    """
    owned = set(already_unlocked)
    newly_unlocked: list[Achievement] = []

    for achievement in ACHIEVEMENTS:
        if achievement.id in owned:
            continue
        predicate = UNLOCK_PREDICATES.get(achievement.id)
        if predicate is None:
            continue
        if predicate(ctx):
            newly_unlocked.append(achievement)

    if newly_unlocked:
        logger.debug(
            "Achievements qualified: %s",
            ", ".join(a.id for a in newly_unlocked),
        )
    return newly_unlocked
