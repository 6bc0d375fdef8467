"""Login streak tracking: calendar-day continuity between logins."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo


class StreakStatus(enum.StrEnum):
    FIRST_LOGIN = "first_login"
    SAME_DAY = "same_day"
    CONSECUTIVE = "consecutive"
    RESET = "reset"


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    """Outcome of comparing the last login with now.

    ``streak`` is the value to persist, or None when nothing changes.
    """

    status: StreakStatus
    streak: int | None
    is_new_day: bool

    def apply(self, current_streak: int) -> int:
        """Streak value after this update, given the stored one."""
        if self.status is StreakStatus.SAME_DAY:
            return max(current_streak, 1)
        if self.status is StreakStatus.CONSECUTIVE:
            return max(current_streak, 1) + 1
        return 1


def _calendar_day(moment: datetime | date, tz: tzinfo) -> date:
    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(tz).date()
    return moment


def update_streak(
    last_login: datetime | date | None,
    now: datetime | None = None,
    tz: tzinfo = UTC,
) -> StreakUpdate:
    """Compare calendar days (midnight-aligned in *tz*), not 24h windows.

    A login at 23:00 followed by one at 01:00 the next day is consecutive.
    Calling twice on the same day never double-increments.
    """
    if last_login is None:
        return StreakUpdate(StreakStatus.FIRST_LOGIN, 1, True)

    now = now or datetime.now(UTC)
    days = (_calendar_day(now, tz) - _calendar_day(last_login, tz)).days

    if days <= 0:
        # Same day (or a clock skewed into the future): no change.
        return StreakUpdate(StreakStatus.SAME_DAY, None, False)
    if days == 1:
        return StreakUpdate(StreakStatus.CONSECUTIVE, None, True)
    return StreakUpdate(StreakStatus.RESET, 1, True)
