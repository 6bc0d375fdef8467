"""
tests/test_scan_service.py — Scan Pipeline Integration Tests
==============================================================

Atomic scoring event against SQLite, stale-response guard, and the
gateway-failure paths of ``run_scan`` with a mocked gateway.
"""

from __future__ import annotations

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rizzculator.database.models import ScoreHistory, User, UserAchievement
from rizzculator.engine.achievements import total_xp_reward
from rizzculator.engine.broker import TOPIC_USERS
from rizzculator.engine.scoring import AnalyzerKind, ScanResult, ScoreBreakdown, get_rank
from rizzculator.errors import StaleScanError, ValidationError
from rizzculator.services.ai_gateway import RATE_LIMITED, UNAVAILABLE, AIGatewayError
from rizzculator.services.scan_service import (
    ScanRequestTracker,
    evaluate_achievements,
    record_scan,
    run_scan,
)


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _result(score: float, kind: AnalyzerKind = AnalyzerKind.SELFIE) -> ScanResult:
    return ScanResult(
        kind=kind,
        rizz_score=score,
        main_character_score=80.0,
        npc_level=20.0,
        overall_score=round((80.0 + score + 80.0) / 3, 2),
        rank=get_rank(score),
        breakdown=ScoreBreakdown(),
        analysis="Score: %s" % score,
        one_liner="Score: %s" % score,
    )


def _gateway(reply=None, error: Exception | None = None) -> MagicMock:
    gw = MagicMock()
    if error is not None:
        gw.analyze = AsyncMock(side_effect=error)
    else:
        gw.analyze = AsyncMock(return_value=reply)
    return gw


def _history(engine, user_id):
    with Session(engine) as session:
        return session.scalars(
            select(ScoreHistory).where(ScoreHistory.user_id == user_id)
        ).all()


class TestRecordScan:
    def test_first_selfie_scan(self, db_engine, make_user, broker):
        make_user("alice")
        changes = []
        broker.subscribe(TOPIC_USERS, changes.append)

        outcome = record_scan(db_engine, "alice", _result(82.0), broker=broker)

        (entry,) = _history(db_engine, "alice")
        assert entry.score == 82.0
        assert entry.type == "selfie"
        assert entry.rank == "A-Tier"

        with Session(db_engine) as session:
            user = session.get(User, "alice")
            assert user.xp == 18
            assert user.rizz_score == 82.0
            assert user.rank == "A-Tier"

        assert outcome.xp_gained == 18
        assert outcome.achievement_xp == 0
        assert outcome.total_xp == 18
        assert outcome.level.level == 1
        assert "first_scan" in {a.id for a in outcome.unlocked}
        assert changes == [{"user_id": "alice", "field": "rizz_score"}]

        data = outcome.to_dict()
        assert data["rizzScore"] == 82.0
        assert data["rank"] == "A-Tier"
        assert data["xpGained"] == 18
        assert "first_scan" in data["achievementsUnlocked"]

    def test_achievement_xp_bonus(self, db_engine, make_user):
        make_user("alice")
        outcome = record_scan(db_engine, "alice", _result(82.0), grant_achievement_xp=True)

        bonus = total_xp_reward(outcome.unlocked)
        assert outcome.achievement_xp == bonus > 0
        with Session(db_engine) as session:
            assert session.get(User, "alice").xp == 18 + bonus

    def test_achievements_not_unlocked_twice(self, db_engine, make_user):
        make_user("alice")
        record_scan(db_engine, "alice", _result(70.0))
        second = record_scan(db_engine, "alice", _result(71.0))

        assert "first_scan" not in {a.id for a in second.unlocked}
        with Session(db_engine) as session:
            count = session.scalar(
                select(func.count()).select_from(UserAchievement)
                .where(UserAchievement.achievement_id == "first_scan")
            )
        assert count == 1

    def test_xp_accumulates_and_score_is_latest(self, db_engine, make_user):
        make_user("alice")
        record_scan(db_engine, "alice", _result(95.0))
        outcome = record_scan(db_engine, "alice", _result(60.0))

        assert outcome.total_xp == 19 + 16
        assert "rizz_god" not in {a.id for a in outcome.unlocked}
        with Session(db_engine) as session:
            user = session.get(User, "alice")
            assert user.rizz_score == 60.0
            assert user.rank == "Rising Star"
        assert [h.score for h in _history(db_engine, "alice")] == [95.0, 60.0]

    def test_screenshot_and_chat_share_a_family(self, db_engine, make_user):
        make_user("alice")
        kinds = [
            AnalyzerKind.SELFIE, AnalyzerKind.CHAT, AnalyzerKind.SCREENSHOT,
            AnalyzerKind.LINKEDIN, AnalyzerKind.INSTAGRAM,
        ]
        unlocked = set()
        for kind in kinds:
            unlocked |= {a.id for a in record_scan(db_engine, "alice", _result(70.0, kind)).unlocked}
        assert "all_analyzers" not in unlocked

        final = record_scan(db_engine, "alice", _result(70.0, AnalyzerKind.DATING))
        assert "all_analyzers" in {a.id for a in final.unlocked}


class TestEvaluateAchievements:
    def test_streak_badge_outside_scan(self, db_engine, make_user):
        make_user("alice")
        with Session(db_engine) as session:
            session.get(User, "alice").login_streak = 7
            session.commit()

        assert [a.id for a in evaluate_achievements(db_engine, "alice")] == ["streak_7"]
        assert evaluate_achievements(db_engine, "alice") == []

    def test_grant_xp(self, db_engine, make_user):
        make_user("alice")
        with Session(db_engine) as session:
            session.get(User, "alice").login_streak = 7
            session.commit()

        evaluate_achievements(db_engine, "alice", grant_xp=True)
        with Session(db_engine) as session:
            assert session.get(User, "alice").xp == 40


class TestScanRequestTracker:
    def test_new_scan_supersedes_old(self):
        tracker = ScanRequestTracker()
        first = tracker.begin("alice")
        second = tracker.begin("alice")
        assert not tracker.is_current("alice", first)
        assert tracker.is_current("alice", second)

    def test_finish_with_stale_token_keeps_newer(self):
        tracker = ScanRequestTracker()
        first = tracker.begin("alice")
        second = tracker.begin("alice")
        tracker.finish("alice", first)
        assert tracker.is_current("alice", second)

    def test_cancel(self):
        tracker = ScanRequestTracker()
        token = tracker.begin("alice")
        assert tracker.cancel("alice") is True
        assert tracker.cancel("alice") is False
        assert not tracker.is_current("alice", token)


class TestRunScan:
    def test_happy_path(self, db_engine, make_user, broker):
        make_user("alice")
        tracker = ScanRequestTracker()
        gw = _gateway({"message": "Rizz score: 72\nSolid energy."})

        outcome = run_async(run_scan(
            db_engine, gw, tracker, "alice", AnalyzerKind.SELFIE,
            [{"role": "user", "content": "data:image/png;base64,AAAA"}],
            broker=broker, rng=random.Random(7),
        ))

        assert not outcome.degraded
        assert not outcome.result.used_fallback
        assert outcome.result.one_liner == "Rizz score: 72"
        (entry,) = _history(db_engine, "alice")
        assert entry.score == outcome.result.rizz_score
        gw.analyze.assert_awaited_once()

    def test_unavailable_gateway_degrades_to_baseline(self, db_engine, make_user):
        make_user("alice")
        gw = _gateway(error=AIGatewayError(UNAVAILABLE, "timeout"))

        outcome = run_async(run_scan(
            db_engine, gw, ScanRequestTracker(), "alice", AnalyzerKind.LINKEDIN,
            [{"role": "user", "content": "my profile"}], rng=random.Random(1),
        ))

        assert outcome.degraded
        assert outcome.result.used_fallback
        assert 0 <= outcome.result.rizz_score <= 100
        assert len(_history(db_engine, "alice")) == 1

    def test_rate_limited_propagates(self, db_engine, make_user):
        make_user("alice")
        gw = _gateway(error=AIGatewayError(RATE_LIMITED, "429"))

        with pytest.raises(AIGatewayError) as exc_info:
            run_async(run_scan(
                db_engine, gw, ScanRequestTracker(), "alice", AnalyzerKind.SELFIE, [],
            ))
        assert exc_info.value.category == RATE_LIMITED
        assert _history(db_engine, "alice") == []

    def test_cancelled_scan_is_discarded(self, db_engine, make_user):
        make_user("alice")
        tracker = ScanRequestTracker()

        def _reply_after_cancel(*args):
            tracker.cancel("alice")
            return {"message": "Score: 90"}

        gw = MagicMock()
        gw.analyze = AsyncMock(side_effect=_reply_after_cancel)

        with pytest.raises(StaleScanError):
            run_async(run_scan(
                db_engine, gw, tracker, "alice", AnalyzerKind.SELFIE, [],
            ))
        assert _history(db_engine, "alice") == []
        with Session(db_engine) as session:
            assert session.get(User, "alice").xp == 0

    def test_ai_chat_is_not_a_scan(self, db_engine, make_user):
        make_user("alice")
        gw = _gateway({"message": "hi"})
        with pytest.raises(ValidationError):
            run_async(run_scan(
                db_engine, gw, ScanRequestTracker(), "alice", AnalyzerKind.AI_CHAT, [],
            ))
        gw.analyze.assert_not_called()
