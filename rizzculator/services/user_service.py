"""
rizzculator.services.user_service — Profiles, Logins, Upvotes, Leaderboard
============================================================================

Synchronous service functions (await them through ``run_db``).

Counter columns (``xp``, ``upvotes``, ``login_streak``,
``ai_conversations``) are only ever written as SQL increments
(``col = col + n``) so concurrent writers never lose an update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rizzculator.constants import calculate_level
from rizzculator.database.engine import get_session
from rizzculator.database.models import ScoreHistory, Upvote, User, UserAchievement
from rizzculator.engine.broker import TOPIC_USERS
from rizzculator.engine.streak import StreakStatus, StreakUpdate, update_streak
from rizzculator.errors import AlreadyDoneError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from rizzculator.engine.broker import InMemoryBroker

logger = logging.getLogger(__name__)

LEADERBOARD_LIMIT = 50
HISTORY_LIMIT = 10
MAX_USERNAME_LENGTH = 50


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
def create_user(
    engine: Engine,
    user_id: str,
    username: str,
    *,
    country: str | None = None,
    state: str | None = None,
) -> User:
    """Create the profile row at signup: numeric fields zeroed, streak 1."""
    username = (username or "").strip()
    if not user_id or not username:
        raise ValidationError("User id and username are required.")
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValidationError(f"Username must be at most {MAX_USERNAME_LENGTH} characters.")

    now = datetime.now(UTC)
    with get_session(engine) as session:
        if session.get(User, user_id) is not None:
            raise AlreadyDoneError("Profile already exists.")
        user = User(
            id=user_id,
            username=username,
            country=country,
            state=state,
            rizz_score=0.0,
            main_character_score=0.0,
            npc_level=0.0,
            xp=0,
            upvotes=0,
            ai_conversations=0,
            login_streak=1,
            last_login_date=now,
            last_active=now,
            created_at=now,
        )
        session.add(user)
    logger.info("Created profile %s (%s)", user_id, username)
    return user


def get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def get_achievement_ids(session: Session, user_id: str) -> set[str]:
    rows = session.scalars(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
    ).all()
    return set(rows)


def leaderboard_position(session: Session, user: User) -> int | None:
    """1-based global position by rizz score; None before the first scan."""
    if user.rizz_score <= 0:
        return None
    ahead = session.scalar(
        select(func.count()).select_from(User).where(User.rizz_score > user.rizz_score)
    ) or 0
    return ahead + 1


def user_dict(user: User, achievements: set[str] | None = None) -> dict:
    level = calculate_level(user.xp)
    data = {
        "id": user.id,
        "username": user.username,
        "country": user.country,
        "state": user.state,
        "bio": user.bio,
        "rizzScore": user.rizz_score,
        "mainCharacterScore": user.main_character_score,
        "npcLevel": user.npc_level,
        "rank": user.rank,
        "xp": user.xp,
        "level": level.level,
        "xpForNextLevel": level.xp_for_next_level,
        "progressPercent": level.progress_percent,
        "loginStreak": user.login_streak,
        "upvotes": user.upvotes,
        "isOnline": user.is_online,
        "lastSeen": user.last_seen.isoformat() if user.last_seen else None,
    }
    if achievements is not None:
        data["achievements"] = sorted(achievements)
    return data


def update_bio(engine: Engine, user_id: str, bio: str) -> None:
    """Store an already-moderated bio."""
    with get_session(engine) as session:
        get_user(session, user_id).bio = bio


# ---------------------------------------------------------------------------
# Logins
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LoginResult:
    update: StreakUpdate
    login_streak: int


def record_login(
    engine: Engine,
    user_id: str,
    now: datetime | None = None,
) -> LoginResult:
    """Apply the streak tracker for a login at *now*.

    The stored streak and ``last_login_date`` only change on a new
    calendar day, so repeated logins on one day are no-ops.

    The new-day write is a compare-and-set on the ``last_login_date``
    that was read: when two logins race, only one matches and the other
    is reported as a same-day login.
    """
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        user = get_user(session, user_id)
        previous = user.last_login_date
        result = update_streak(previous, now)

        if result.is_new_day:
            if result.status is StreakStatus.CONSECUTIVE:
                streak_value = User.login_streak + 1
            else:
                streak_value = result.streak
            if previous is None:
                unchanged = User.last_login_date.is_(None)
            else:
                unchanged = User.last_login_date == previous
            applied = session.execute(
                update(User)
                .where(User.id == user_id, unchanged)
                .values(login_streak=streak_value, last_login_date=now, last_active=now)
            ).rowcount
            if not applied:
                logger.debug("Concurrent login already advanced %s's streak", user_id)
                result = StreakUpdate(StreakStatus.SAME_DAY, None, False)

        if not result.is_new_day:
            session.execute(update(User).where(User.id == user_id).values(last_active=now))

        session.flush()
        session.refresh(user)
        streak = user.login_streak

    if result.status is StreakStatus.CONSECUTIVE:
        logger.info("User %s extended streak to %d", user_id, streak)
    return LoginResult(update=result, login_streak=streak)


# ---------------------------------------------------------------------------
# Upvotes
# ---------------------------------------------------------------------------
def upvote(
    engine: Engine,
    from_user_id: str,
    to_user_id: str,
    broker: InMemoryBroker | None = None,
) -> int:
    """Record one upvote and bump the target's counter.

    The (voter, target) primary key is the uniqueness guarantee: the
    insert runs inside a SAVEPOINT and a duplicate key raises
    :class:`AlreadyDoneError` without touching the counter, even when two
    requests race past any earlier existence check.

    Returns the target's new upvote count.
    """
    if from_user_id == to_user_id:
        raise ValidationError("You can't upvote yourself.")

    with get_session(engine) as session:
        get_user(session, to_user_id)
        get_user(session, from_user_id)
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(Upvote(from_user_id=from_user_id, to_user_id=to_user_id))
                session.flush()
        except IntegrityError:
            raise AlreadyDoneError("You already upvoted this user!") from None

        session.execute(
            update(User).where(User.id == to_user_id).values(upvotes=User.upvotes + 1)
        )
        count = session.scalar(select(User.upvotes).where(User.id == to_user_id))

    if broker is not None:
        broker.publish(TOPIC_USERS, {"user_id": to_user_id, "field": "upvotes"})
    return count or 0


# ---------------------------------------------------------------------------
# AI chat counter
# ---------------------------------------------------------------------------
def increment_ai_conversations(engine: Engine, user_id: str) -> None:
    with get_session(engine) as session:
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                ai_conversations=User.ai_conversations + 1,
                last_active=datetime.now(UTC),
            )
        )


# ---------------------------------------------------------------------------
# Leaderboard & history
# ---------------------------------------------------------------------------
def get_leaderboard(
    session: Session,
    *,
    country: str | None = None,
    state: str | None = None,
    limit: int = LEADERBOARD_LIMIT,
) -> list[User]:
    """Top users by rizz score, optionally filtered by country or state."""
    query = select(User)
    if country:
        query = query.where(User.country == country)
    if state:
        query = query.where(User.state == state)
    query = query.order_by(User.rizz_score.desc(), User.id).limit(limit)
    return list(session.scalars(query).all())


def get_score_history(
    session: Session,
    user_id: str,
    limit: int = HISTORY_LIMIT,
) -> list[ScoreHistory]:
    """Most recent *limit* entries, returned oldest first for charting."""
    rows = session.scalars(
        select(ScoreHistory)
        .where(ScoreHistory.user_id == user_id)
        .order_by(ScoreHistory.timestamp.desc(), ScoreHistory.id.desc())
        .limit(limit)
    ).all()
    return list(reversed(rows))
