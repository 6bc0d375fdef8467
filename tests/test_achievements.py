"""
tests/test_achievements.py — Unit Tests for the Achievement Check Pipeline
============================================================================

Predicates per catalog entry, idempotence against already-held ids,
catalog ordering and the leaderboard-rank edge cases.
"""

from __future__ import annotations

import pytest

from rizzculator.engine.achievements import (
    ACHIEVEMENTS,
    ACHIEVEMENTS_BY_ID,
    UNLOCK_PREDICATES,
    AchievementContext,
    check_achievements,
    get_achievement,
    total_xp_reward,
)


def _ctx(**kwargs) -> AchievementContext:
    """Build an AchievementContext with sensible defaults."""
    return AchievementContext(**kwargs)


def _ids(ctx: AchievementContext, owned=()) -> list[str]:
    return [a.id for a in check_achievements(ctx, owned)]


class TestCatalog:
    def test_every_entry_has_a_predicate(self):
        assert set(UNLOCK_PREDICATES) == set(ACHIEVEMENTS_BY_ID)

    def test_xp_rewards(self):
        assert get_achievement("first_scan").xp_reward == 10
        assert get_achievement("perfect_score").rarity == "mythic"
        assert total_xp_reward(ACHIEVEMENTS) == 750

    def test_unknown_id(self):
        assert get_achievement("nope") is None


class TestPredicates:
    def test_empty_context_unlocks_nothing(self):
        assert _ids(_ctx()) == []

    def test_first_scan(self):
        assert _ids(_ctx(total_scans=1)) == ["first_scan"]

    @pytest.mark.parametrize(
        "score, expected",
        [(94.99, []), (95, ["rizz_god"]), (99.99, ["rizz_god"]), (100, ["rizz_god", "perfect_score"])],
    )
    def test_score_badges(self, score, expected):
        assert _ids(_ctx(highest_score=score)) == expected

    def test_top_10_needs_known_rank(self):
        assert "top_10" not in _ids(_ctx(leaderboard_rank=None))
        assert "top_10" not in _ids(_ctx(leaderboard_rank=11))
        assert "top_10" in _ids(_ctx(leaderboard_rank=10))
        assert "top_10" in _ids(_ctx(leaderboard_rank=1))

    def test_both_streak_badges_at_30(self):
        ids = _ids(_ctx(login_streak=30))
        assert ids == ["streak_7", "streak_30"]

    def test_streak_6_is_not_enough(self):
        assert _ids(_ctx(login_streak=6)) == []

    def test_counters(self):
        assert _ids(_ctx(messages_sent=50)) == ["social_butterfly"]
        assert _ids(_ctx(upvotes_received=100)) == ["upvote_king"]
        assert _ids(_ctx(ai_conversations=100)) == ["chat_master"]
        assert _ids(_ctx(messages_sent=49, upvotes_received=99, ai_conversations=99)) == []

    def test_all_analyzers(self):
        assert _ids(_ctx(analyzers_used=4)) == []
        assert _ids(_ctx(analyzers_used=5)) == ["all_analyzers"]


class TestCheckAchievements:
    def test_already_unlocked_not_returned_again(self):
        ctx = _ctx(total_scans=3, highest_score=96)
        assert _ids(ctx, owned={"first_scan"}) == ["rizz_god"]
        assert _ids(ctx, owned={"first_scan", "rizz_god"}) == []

    def test_multiple_unlocks_returned_in_catalog_order(self):
        ctx = _ctx(
            total_scans=1, highest_score=100, leaderboard_rank=1,
            login_streak=30, analyzers_used=5,
        )
        ids = _ids(ctx)
        catalog_order = [a.id for a in ACHIEVEMENTS]
        assert ids == [i for i in catalog_order if i in ids]
        assert ids == [
            "first_scan", "rizz_god", "top_10", "streak_7", "streak_30",
            "all_analyzers", "perfect_score",
        ]
