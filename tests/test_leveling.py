"""
tests/test_leveling.py — Level Curve, Scan XP and Login Streak Tests
=====================================================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from rizzculator.constants import (
    calculate_level,
    rarity_color,
    rarity_weight,
    scan_xp,
    xp_for_level,
)
from rizzculator.engine.streak import StreakStatus, update_streak


class TestLevelCurve:
    @pytest.mark.parametrize(
        "xp, level",
        [(0, 1), (99, 1), (100, 2), (399, 2), (400, 3), (899, 3), (900, 4), (10_000, 11)],
    )
    def test_level_boundaries(self, xp, level):
        assert calculate_level(xp).level == level

    def test_boundary_minus_one_is_lower_level(self):
        for level in range(1, 30):
            start = xp_for_level(level + 1)
            assert calculate_level(start).level == level + 1
            assert calculate_level(start - 1).level == level

    def test_progress(self):
        info = calculate_level(250)
        assert info.level == 2
        assert info.xp_for_current_level == 100
        assert info.xp_for_next_level == 400
        assert info.xp_progress == 150
        assert info.xp_needed == 300
        assert info.progress_percent == 50

    def test_progress_percent_bounded(self):
        for xp in range(0, 5000, 37):
            assert 0 <= calculate_level(xp).progress_percent <= 100

    def test_negative_xp_rejected(self):
        with pytest.raises(ValueError):
            calculate_level(-1)


class TestScanXp:
    @pytest.mark.parametrize("score, xp", [(0, 10), (9.99, 10), (82.0, 18), (95.5, 19), (100, 20)])
    def test_scan_xp(self, score, xp):
        assert scan_xp(score) == xp


class TestRarity:
    def test_known_and_unknown(self):
        assert rarity_color("mythic") == "#EF4444"
        assert rarity_color("shiny") == rarity_color("common")
        assert rarity_weight("common") == 1
        assert rarity_weight("mythic") == 5
        assert rarity_weight("shiny") == 1


class TestStreak:
    def test_first_login(self):
        update = update_streak(None)
        assert update.status is StreakStatus.FIRST_LOGIN
        assert update.streak == 1

    def test_same_day_is_noop(self):
        last = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
        update = update_streak(last, datetime(2026, 3, 1, 22, 0, tzinfo=UTC))
        assert update.status is StreakStatus.SAME_DAY
        assert not update.is_new_day
        assert update.apply(4) == 4

    def test_calendar_days_not_24h(self):
        last = datetime(2026, 3, 1, 23, 0, tzinfo=UTC)
        update = update_streak(last, datetime(2026, 3, 2, 1, 0, tzinfo=UTC))
        assert update.status is StreakStatus.CONSECUTIVE
        assert update.apply(4) == 5

    def test_gap_resets(self):
        last = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        update = update_streak(last, last + timedelta(days=2))
        assert update.status is StreakStatus.RESET
        assert update.apply(9) == 1

    def test_naive_datetimes_treated_as_utc(self):
        update = update_streak(datetime(2026, 3, 1, 12), datetime(2026, 3, 2, 0, 30, tzinfo=UTC))
        assert update.status is StreakStatus.CONSECUTIVE

    def test_local_timezone(self):
        tz = timezone(timedelta(hours=-5))
        # 03:00 UTC on the 2nd is still the 1st in UTC-5
        update = update_streak(
            datetime(2026, 3, 1, 15, 0, tzinfo=UTC),
            datetime(2026, 3, 2, 3, 0, tzinfo=UTC),
            tz=tz,
        )
        assert update.status is StreakStatus.SAME_DAY

    def test_date_input(self):
        update = update_streak(date(2026, 3, 1), datetime(2026, 3, 2, 9, tzinfo=UTC))
        assert update.status is StreakStatus.CONSECUTIVE
