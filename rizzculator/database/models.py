"""
rizzculator.database.models — SQLAlchemy 2.0 Data Models
==========================================================

Tables:
- users              — Profiles, current scores, counters and presence
- user_achievements  — Unlocked badges (composite PK = idempotent unlock)
- score_history      — Append-only journal of completed analyses
- upvotes            — One row per (voter, target) pair
- messages           — Direct messages with an unordered participant pair

Level is never stored; it is derived from ``users.xp``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Rizzculator ORM models."""


# ---------------------------------------------------------------------------
# Users: one row per account (id issued by the auth provider)
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    country: Mapped[str | None] = mapped_column(String(64), default=None)
    state: Mapped[str | None] = mapped_column(String(64), default=None)
    bio: Mapped[str | None] = mapped_column(Text, default=None)

    rizz_score: Mapped[float] = mapped_column(Float, default=0.0)
    main_character_score: Mapped[float] = mapped_column(Float, default=0.0)
    npc_level: Mapped[float] = mapped_column(Float, default=0.0)
    rank: Mapped[str] = mapped_column(String(32), default="Unranked")

    xp: Mapped[int] = mapped_column(Integer, default=0)
    login_streak: Mapped[int] = mapped_column(Integer, default=1)
    upvotes: Mapped[int] = mapped_column(Integer, default=0)
    ai_conversations: Mapped[int] = mapped_column(Integer, default=0)

    last_login_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_active: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)
    last_seen: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    achievements: Mapped[list[UserAchievement]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("xp >= 0", name="ck_users_xp_nonneg"),
        CheckConstraint("upvotes >= 0", name="ck_users_upvotes_nonneg"),
        Index("ix_users_rizz_score_desc", "rizz_score"),
        Index("ix_users_country", "country"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} name={self.username!r} xp={self.xp}>"


# ---------------------------------------------------------------------------
# UserAchievement: unlocked badges
# ---------------------------------------------------------------------------
class UserAchievement(Base):
    __tablename__ = "user_achievements"

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    achievement_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    user: Mapped[User] = relationship(back_populates="achievements")

    def __repr__(self) -> str:
        return f"<UserAchievement user={self.user_id!r} ach={self.achievement_id!r}>"


# ---------------------------------------------------------------------------
# ScoreHistory: append-only, one row per completed analysis
# ---------------------------------------------------------------------------
class ScoreHistory(Base):
    __tablename__ = "score_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    rank: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        Index("ix_score_history_user_ts", "user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ScoreHistory user={self.user_id!r} score={self.score} type={self.type!r}>"


# ---------------------------------------------------------------------------
# Upvote: the composite PK is the at-most-once guarantee
# ---------------------------------------------------------------------------
class Upvote(Base):
    __tablename__ = "upvotes"

    from_user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    to_user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Upvote {self.from_user_id!r} → {self.to_user_id!r}>"


# ---------------------------------------------------------------------------
# Message: direct messages
# ---------------------------------------------------------------------------
class Message(Base):
    """A direct message.

    ``participant_low``/``participant_high`` hold the sorted pair so
    "messages between A and B" is one equality query regardless of
    direction; ``from_user_id``/``to_user_id`` keep the direction.
    """
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    to_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    participant_low: Mapped[str] = mapped_column(String(128), nullable=False)
    participant_high: Mapped[str] = mapped_column(String(128), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    __table_args__ = (
        Index("ix_messages_pair_ts", "participant_low", "participant_high", "timestamp"),
        Index("ix_messages_to_read", "to_user_id", "read"),
        Index("ix_messages_from", "from_user_id"),
    )

    def __repr__(self) -> str:
        return f"<Message id={self.id} {self.from_user_id!r} → {self.to_user_id!r}>"

    @property
    def participants(self) -> tuple[str, str]:
        return (self.participant_low, self.participant_high)


def participant_pair(a: str, b: str) -> tuple[str, str]:
    """Sorted (low, high) pair for two user ids."""
    return (a, b) if a <= b else (b, a)
