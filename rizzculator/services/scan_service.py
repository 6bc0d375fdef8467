"""
rizzculator.services.scan_service — Scan Pipeline
===================================================

One scan = gateway call → normalizer → a single DB transaction that:

1. updates the user's score fields and adds scan XP (SQL increment)
2. appends the score history entry
3. evaluates achievements against the fresh stats and merges new ids
4. optionally adds the achievement XP rewards

Nothing is visible to a concurrent reader (e.g. a leaderboard refresh)
until all four steps commit.

Requests are tagged with a per-user token from :class:`ScanRequestTracker`;
a response whose token is no longer current is discarded instead of
being applied.
"""

from __future__ import annotations

import logging
import random
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import distinct, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rizzculator.constants import LevelInfo, calculate_level, scan_xp
from rizzculator.database.engine import get_session, run_db
from rizzculator.database.models import Message, ScoreHistory, User, UserAchievement
from rizzculator.engine.achievements import (
    Achievement,
    AchievementContext,
    check_achievements,
    total_xp_reward,
)
from rizzculator.engine.broker import TOPIC_USERS
from rizzculator.engine.scoring import (
    SCAN_FAMILIES,
    AnalyzerKind,
    ScanResult,
    normalize_analysis,
)
from rizzculator.errors import StaleScanError, ValidationError
from rizzculator.services.ai_gateway import UNAVAILABLE, AIGatewayError
from rizzculator.services.user_service import (
    get_achievement_ids,
    get_user,
    leaderboard_position,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from rizzculator.engine.broker import InMemoryBroker
    from rizzculator.services.ai_gateway import AIGateway

logger = logging.getLogger(__name__)

_KIND_VALUES = frozenset(k.value for k in AnalyzerKind)


# ---------------------------------------------------------------------------
# Stale-response guard
# ---------------------------------------------------------------------------
class ScanRequestTracker:
    """Tracks the one in-flight scan each user is still waiting on.

    Starting a new scan supersedes the previous one; cancelling (user
    navigated away) clears it.  Either way the superseded response is
    discarded when it finally arrives.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: dict[str, str] = {}

    def begin(self, user_id: str) -> str:
        token = uuid.uuid4().hex
        with self._lock:
            self._current[user_id] = token
        return token

    def is_current(self, user_id: str, token: str) -> bool:
        with self._lock:
            return self._current.get(user_id) == token

    def cancel(self, user_id: str) -> bool:
        """Drop the user's in-flight scan.  Returns True if one existed."""
        with self._lock:
            return self._current.pop(user_id, None) is not None

    def finish(self, user_id: str, token: str) -> None:
        with self._lock:
            if self._current.get(user_id) == token:
                del self._current[user_id]


# ---------------------------------------------------------------------------
# Stats snapshot
# ---------------------------------------------------------------------------
def build_achievement_context(session: Session, user: User) -> AchievementContext:
    """Cumulative stats for *user* as seen inside the current transaction."""
    total_scans, highest = session.execute(
        select(func.count(ScoreHistory.id), func.max(ScoreHistory.score))
        .where(ScoreHistory.user_id == user.id)
    ).one()
    kinds = session.scalars(
        select(distinct(ScoreHistory.type)).where(ScoreHistory.user_id == user.id)
    ).all()
    families = {AnalyzerKind(k).family for k in kinds if k in _KIND_VALUES}
    messages_sent = session.scalar(
        select(func.count(Message.id)).where(Message.from_user_id == user.id)
    ) or 0

    return AchievementContext(
        total_scans=total_scans or 0,
        highest_score=highest or 0.0,
        login_streak=user.login_streak,
        upvotes_received=user.upvotes,
        messages_sent=messages_sent,
        analyzers_used=len(families & SCAN_FAMILIES),
        ai_conversations=user.ai_conversations,
        leaderboard_rank=leaderboard_position(session, user),
    )


def merge_achievements(
    session: Session,
    user_id: str,
    achievements: list[Achievement],
) -> list[Achievement]:
    """Insert unlock rows; rows a concurrent writer already added are skipped.

    Returns the achievements actually recorded by this call.
    """
    recorded: list[Achievement] = []
    for achievement in achievements:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(UserAchievement(user_id=user_id, achievement_id=achievement.id))
                session.flush()
        except IntegrityError:
            logger.debug("Achievement %s already recorded for %s", achievement.id, user_id)
            continue
        recorded.append(achievement)
    return recorded


def evaluate_achievements(
    engine: Engine,
    user_id: str,
    *,
    grant_xp: bool = False,
) -> list[Achievement]:
    """Re-check a user's achievements outside a scan (login, upvote, message)."""
    with get_session(engine) as session:
        user = get_user(session, user_id)
        ctx = build_achievement_context(session, user)
        new = check_achievements(ctx, get_achievement_ids(session, user_id))
        recorded = merge_achievements(session, user_id, new)
        bonus = total_xp_reward(recorded) if grant_xp else 0
        if bonus:
            session.execute(update(User).where(User.id == user_id).values(xp=User.xp + bonus))
    return recorded


# ---------------------------------------------------------------------------
# Atomic scoring event
# ---------------------------------------------------------------------------
@dataclass
class ScanOutcome:
    result: ScanResult
    xp_gained: int
    achievement_xp: int
    total_xp: int
    level: LevelInfo
    unlocked: list[Achievement] = field(default_factory=list)
    leaderboard_rank: int | None = None
    history_id: int | None = None
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        r = self.result
        return {
            "rizzScore": r.rizz_score,
            "mainCharacterScore": r.main_character_score,
            "npcLevel": r.npc_level,
            "overallScore": r.overall_score,
            "rank": r.rank.name,
            "rankData": {
                "name": r.rank.name,
                "emoji": r.rank.emoji,
                "color": r.rank.color,
                "tier": r.rank.tier,
            },
            "vibe": f"{r.rank.emoji} {r.rank.name}",
            "aiAnalysis": r.analysis,
            "oneLiner": r.one_liner,
            "uploadType": r.kind.value,
            "breakdown": {
                "overall": r.breakdown.overall,
                "categories": r.breakdown.categories,
                "strengths": r.breakdown.strengths,
                "weaknesses": r.breakdown.weaknesses,
                "improvements": r.breakdown.improvements,
            },
            "xpGained": self.xp_gained,
            "achievementXp": self.achievement_xp,
            "xp": self.total_xp,
            "level": self.level.level,
            "progressPercent": self.level.progress_percent,
            "leaderboardRank": self.leaderboard_rank,
            "achievementsUnlocked": [a.id for a in self.unlocked],
            "degraded": self.degraded,
        }


def record_scan(
    engine: Engine,
    user_id: str,
    result: ScanResult,
    *,
    broker: InMemoryBroker | None = None,
    grant_achievement_xp: bool = False,
    now: datetime | None = None,
) -> ScanOutcome:
    """Apply one completed scan to the user in a single transaction."""
    now = now or datetime.now(UTC)
    xp_gain = scan_xp(result.rizz_score)

    with get_session(engine) as session:
        user = get_user(session, user_id)
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                rizz_score=result.rizz_score,
                main_character_score=result.main_character_score,
                npc_level=result.npc_level,
                rank=result.rank.name,
                xp=User.xp + xp_gain,
                last_active=now,
            )
        )
        history = ScoreHistory(
            user_id=user_id,
            score=result.rizz_score,
            type=result.kind.value,
            rank=result.rank.name,
            timestamp=now,
        )
        session.add(history)
        session.flush()
        session.refresh(user)

        ctx = build_achievement_context(session, user)
        new = check_achievements(ctx, get_achievement_ids(session, user_id))
        unlocked = merge_achievements(session, user_id, new)

        bonus = total_xp_reward(unlocked) if grant_achievement_xp else 0
        if bonus:
            session.execute(
                update(User).where(User.id == user_id).values(xp=User.xp + bonus)
            )
            session.flush()
            session.refresh(user)

        outcome = ScanOutcome(
            result=result,
            xp_gained=xp_gain,
            achievement_xp=bonus,
            total_xp=user.xp,
            level=calculate_level(user.xp),
            unlocked=unlocked,
            leaderboard_rank=ctx.leaderboard_rank,
            history_id=history.id,
        )

    logger.info(
        "Scan recorded for %s: %.2f (%s) +%d XP, unlocked=%s",
        user_id, result.rizz_score, result.rank.name, xp_gain + bonus,
        [a.id for a in unlocked],
    )
    if broker is not None:
        broker.publish(TOPIC_USERS, {"user_id": user_id, "field": "rizz_score"})
    return outcome


# ---------------------------------------------------------------------------
# Full async pipeline
# ---------------------------------------------------------------------------
async def run_scan(
    engine: Engine,
    gateway: AIGateway,
    tracker: ScanRequestTracker,
    user_id: str,
    kind: AnalyzerKind,
    messages: list[dict[str, Any]],
    *,
    broker: InMemoryBroker | None = None,
    user_profile: dict | None = None,
    grant_achievement_xp: bool = False,
    rng: random.Random | None = None,
) -> ScanOutcome:
    """Call the gateway, normalize and persist one scan.

    * An *unavailable* gateway (timeout, 5xx, malformed body) degrades to
      the randomized baseline rather than failing the scan.
    * Rate-limit and configuration errors propagate as
      :class:`AIGatewayError` so the caller can tell the user.
    * A response that arrives after the scan was superseded or cancelled
      raises :class:`StaleScanError` and is not applied.
    """
    if kind is AnalyzerKind.AI_CHAT:
        raise ValidationError("Choose an analyzer type to scan.")

    token = tracker.begin(user_id)
    degraded = False
    try:
        try:
            reply = await gateway.analyze(kind, messages, user_profile)
        except AIGatewayError as exc:
            if exc.category != UNAVAILABLE:
                raise
            logger.warning("AI gateway unavailable for %s scan — using baseline: %s", kind, exc.detail)
            reply = {"message": ""}
            degraded = True

        if not tracker.is_current(user_id, token):
            logger.info("Discarding stale %s scan for %s", kind, user_id)
            raise StaleScanError("Scan was cancelled or superseded.")

        result = normalize_analysis(
            kind,
            reply.get("message"),
            gateway_scores=reply.get("scores"),
            rng=rng,
        )
        outcome = await run_db(
            record_scan,
            engine,
            user_id,
            result,
            broker=broker,
            grant_achievement_xp=grant_achievement_xp,
        )
        outcome.degraded = degraded
        return outcome
    finally:
        tracker.finish(user_id, token)
