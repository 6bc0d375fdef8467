"""
rizzculator.constants — Shared Constants & Leveling Formula
=============================================================

Single source of truth for rarity presentation and the leveling curve.
Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Rarity presentation (achievement badges, catalog endpoint)
# ---------------------------------------------------------------------------
RARITIES: tuple[str, ...] = ("common", "rare", "epic", "legendary", "mythic")

RARITY_COLORS_HEX: dict[str, str] = {
    "common": "#9CA3AF",
    "rare": "#3B82F6",
    "epic": "#A855F7",
    "legendary": "#F59E0B",
    "mythic": "#EF4444",
}

# Display weight: higher sorts first in badge showcases.
RARITY_WEIGHTS: dict[str, int] = {
    rarity: weight for weight, rarity in enumerate(RARITIES, start=1)
}


def rarity_color(rarity: str) -> str:
    """Hex color for *rarity*; unknown rarities render as common."""
    return RARITY_COLORS_HEX.get(rarity, RARITY_COLORS_HEX["common"])


def rarity_weight(rarity: str) -> int:
    """Display weight for *rarity* (common=1 … mythic=5)."""
    return RARITY_WEIGHTS.get(rarity, RARITY_WEIGHTS["common"])


# ---------------------------------------------------------------------------
# Leveling formula: THE single canonical implementation
# ---------------------------------------------------------------------------
XP_PER_LEVEL_UNIT = 100


@dataclass(frozen=True, slots=True)
class LevelInfo:
    """Level progression derived from total XP.  Never persisted."""

    level: int
    xp: int
    xp_for_current_level: int
    xp_for_next_level: int
    xp_progress: int
    xp_needed: int
    progress_percent: int


def xp_for_level(level: int) -> int:
    """Total XP at which *level* begins: ``(level - 1)² × 100``."""
    return (level - 1) ** 2 * XP_PER_LEVEL_UNIT


def calculate_level(xp: int) -> LevelInfo:
    """Map cumulative *xp* to its level and progress.

    ``level = floor(sqrt(xp / 100)) + 1``, computed with integer square
    roots so level boundaries are exact: ``xp_for_next_level - 1`` is
    always still the lower level.

    Raises
    ------
    ValueError
        If *xp* is negative.
    """
    if xp < 0:
        raise ValueError(f"XP cannot be negative (got {xp})")

    level = math.isqrt(xp // XP_PER_LEVEL_UNIT) + 1
    floor_xp = xp_for_level(level)
    next_xp = xp_for_level(level + 1)
    progress = xp - floor_xp
    needed = next_xp - floor_xp
    percent = round(progress / needed * 100)

    return LevelInfo(
        level=level,
        xp=xp,
        xp_for_current_level=floor_xp,
        xp_for_next_level=next_xp,
        xp_progress=progress,
        xp_needed=needed,
        progress_percent=max(0, min(100, percent)),
    )


# ---------------------------------------------------------------------------
# Scan rewards
# ---------------------------------------------------------------------------
SCAN_BASE_XP = 10


def scan_xp(rizz_score: float) -> int:
    """XP granted for one completed scan: ``10 + floor(score / 10)``."""
    return SCAN_BASE_XP + math.floor(rizz_score / 10)
