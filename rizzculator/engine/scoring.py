"""
rizzculator.engine.scoring — Score Normalizer
===============================================

Turns free-text AI analysis into bounded numeric scores, a rank tier and
a per-category breakdown.

Pipeline::

    AI text → extract explicit score (or randomized baseline)
            → factor adjustments → clamp → ±1 jitter → ScanResult

The randomized baseline is a permanent part of the contract: the model
does not always phrase a number the way we expect, and a failed or empty
response must still produce a valid score.

This module is pure calculation — no database I/O, no network I/O.
Randomness is drawn from an injectable :class:`random.Random` so tests
can seed it.
"""

from __future__ import annotations

import enum
import logging
import math
import random
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SCORE_MIN = 0.0
SCORE_MAX = 100.0

BASELINE_RANGE = (65.0, 98.0)
MAIN_CHARACTER_RANGE = (70.0, 98.0)
NPC_LEVEL_RANGE = (5.0, 35.0)
JITTER = 1.0


class AnalyzerKind(enum.StrEnum):
    """What the user submitted for analysis."""
    SELFIE = "selfie"
    CHAT = "chat"
    SCREENSHOT = "screenshot"
    LINKEDIN = "linkedin"
    INSTAGRAM = "instagram"
    DATING = "dating"
    AI_CHAT = "ai_chat"

    @property
    def is_image(self) -> bool:
        return self in (AnalyzerKind.SELFIE, AnalyzerKind.CHAT, AnalyzerKind.SCREENSHOT)

    @property
    def family(self) -> str:
        """Analyzer family counted by the variety achievement.

        Chat and screenshot uploads are the same analyzer.
        """
        if self is AnalyzerKind.SCREENSHOT:
            return AnalyzerKind.CHAT.value
        return self.value


SCAN_FAMILIES: frozenset[str] = frozenset({
    AnalyzerKind.SELFIE.value,
    AnalyzerKind.CHAT.value,
    AnalyzerKind.LINKEDIN.value,
    AnalyzerKind.INSTAGRAM.value,
    AnalyzerKind.DATING.value,
})


def parse_kind(value: str | None) -> AnalyzerKind:
    """Parse a request ``type`` field; anything unknown is generic chat."""
    try:
        return AnalyzerKind((value or "").strip().lower())
    except ValueError:
        return AnalyzerKind.AI_CHAT


# ---------------------------------------------------------------------------
# Rank tiers
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RankTier:
    name: str
    emoji: str
    color: str
    tier: int
    min_score: float


RANK_TIERS: tuple[RankTier, ...] = (
    RankTier("Rizz God", "\U0001f525", "#FF0080", 7, 95),
    RankTier("Rizz Legend", "⭐", "#FFD700", 6, 90),
    RankTier("S-Tier", "\U0001f48e", "#00D4FF", 5, 85),
    RankTier("A-Tier", "\U0001f4ab", "#9D4EDD", 4, 80),
    RankTier("B-Tier", "✨", "#06FFA5", 3, 75),
    RankTier("C-Tier", "\U0001f31f", "#FFB627", 2, 70),
    RankTier("Rising Star", "⭐", "#888888", 1, float("-inf")),
)


def get_rank(score: float) -> RankTier:
    """Select the rank tier for *score* from the threshold table."""
    for tier in RANK_TIERS:
        if score >= tier.min_score:
            return tier
    return RANK_TIERS[-1]


# ---------------------------------------------------------------------------
# Factors
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScoreFactors:
    """Small weights that nudge the base score.

    Positive factors are multipliers in [0, 2]; penalties are flags or a
    cringe multiplier.
    """

    confidence: float = 0.0
    creativity: float = 0.0
    authenticity: float = 0.0
    humor: float = 0.0
    trying_too_hard: bool = False
    generic: bool = False
    cringe: float = 0.0

    @classmethod
    def randomized(cls, rng: random.Random) -> ScoreFactors:
        """Standard per-scan factor draw used by the scan pipeline."""
        return cls(
            confidence=rng.uniform(0, 2),
            creativity=rng.uniform(0, 2),
            authenticity=rng.uniform(0, 2),
        )

    def adjustment(self) -> float:
        delta = (
            self.confidence * 5
            + self.creativity * 3
            + self.authenticity * 4
            + self.humor * 3
            - self.cringe * 2
        )
        if self.trying_too_hard:
            delta -= 10
        if self.generic:
            delta -= 15
        return delta


def clamp_score(value: float) -> float:
    """Clamp to [0, 100]; NaN collapses to the floor."""
    if math.isnan(value):
        return SCORE_MIN
    return max(SCORE_MIN, min(SCORE_MAX, value))


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------
def extract_score(text: str | None, keyword: str) -> float | None:
    """Find ``<keyword>: <number>`` in *text* (case-insensitive)."""
    if not text:
        return None
    pattern = re.compile(rf"{re.escape(keyword)}[:\s]*(\d+(?:\.\d+)?)", re.IGNORECASE)
    match = pattern.search(text)
    if match is None:
        return None
    return float(match.group(1))


_LIST_MARKER = re.compile(r"^[-•*\d.]+\s*")

STRENGTH_KEYWORDS = ("good", "great", "strong", "impressive", "works")
WEAKNESS_KEYWORDS = ("weak", "lacking", "needs", "wrong", "avoid")
IMPROVEMENT_KEYWORDS = ("improve", "fix", "change", "try", "consider")
MAX_LIST_ITEMS = 3


def extract_list_items(text: str | None, keywords: tuple[str, ...]) -> list[str]:
    """Lines mentioning any of *keywords*, stripped of list markers.

    Keeps at most three, in source order.  Lines of ten characters or
    fewer are ignored as noise.
    """
    if not text:
        return []
    items: list[str] = []
    for line in text.splitlines():
        lowered = line.lower()
        if not any(kw in lowered for kw in keywords):
            continue
        stripped = line.strip()
        if len(stripped) <= 10:
            continue
        cleaned = _LIST_MARKER.sub("", stripped).strip()
        if cleaned:
            items.append(cleaned)
        if len(items) == MAX_LIST_ITEMS:
            break
    return items


# ---------------------------------------------------------------------------
# Category breakdown
# ---------------------------------------------------------------------------
# category → (keyword searched in text, fallback, inverted)
# Inverted categories are reported as 100 - extracted (e.g. cringe → originality).
CATEGORY_KEYWORDS: dict[AnalyzerKind, dict[str, tuple[str, int, bool]]] = {
    AnalyzerKind.LINKEDIN: {
        "professionalism": ("professional", 75, False),
        "clarity": ("clarity", 70, False),
        "impact": ("impact", 65, False),
        "authenticity": ("authentic", 80, False),
    },
    AnalyzerKind.INSTAGRAM: {
        "originality": ("cringe", 30, True),
        "personality": ("personality", 70, False),
        "appeal": ("appeal", 75, False),
        "brevity": ("concise", 80, False),
    },
    AnalyzerKind.DATING: {
        "attraction": ("swipe-right", 70, False),
        "personality": ("personality", 75, False),
        "humor": ("funny", 65, False),
        "authenticity": ("genuine", 80, False),
    },
    AnalyzerKind.SELFIE: {
        "confidence": ("confidence", 75, False),
        "style": ("style", 70, False),
        "energy": ("energy", 80, False),
        "vibe": ("vibe", 75, False),
    },
}


@dataclass
class ScoreBreakdown:
    overall: int = 0
    categories: dict[str, int] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)


def score_breakdown(kind: AnalyzerKind, text: str | None) -> ScoreBreakdown:
    """Per-category scores plus strengths/weaknesses/improvements."""
    breakdown = ScoreBreakdown()
    for name, (keyword, fallback, inverted) in CATEGORY_KEYWORDS.get(kind, {}).items():
        found = extract_score(text, keyword)
        value = fallback if found is None else int(found)
        if inverted:
            value = 100 - value
        breakdown.categories[name] = int(clamp_score(value))

    if breakdown.categories:
        values = breakdown.categories.values()
        breakdown.overall = round(sum(values) / len(values))

    breakdown.strengths = extract_list_items(text, STRENGTH_KEYWORDS)
    breakdown.weaknesses = extract_list_items(text, WEAKNESS_KEYWORDS)
    breakdown.improvements = extract_list_items(text, IMPROVEMENT_KEYWORDS)
    return breakdown


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------
def baseline_score(rng: random.Random) -> float:
    """Randomized fallback base score in [65, 98]."""
    return rng.uniform(*BASELINE_RANGE)


def calculate_rizz_score(
    base_score: float,
    factors: ScoreFactors | None = None,
    rng: random.Random | None = None,
) -> float:
    """Apply factor adjustments, clamp, jitter by ±1 and round to 2 decimals.

    The jitter only keeps leaderboard ties rare; it carries no signal.
    """
    rng = rng or random.Random()
    factors = factors or ScoreFactors()
    score = clamp_score(base_score + factors.adjustment())
    score = clamp_score(score + rng.uniform(-JITTER, JITTER))
    return round(score, 2)


def _auxiliary(rng: random.Random, bounds: tuple[float, float]) -> float:
    return round(clamp_score(rng.uniform(*bounds)), 2)


@dataclass
class ScanResult:
    """Normalized output of one analysis."""

    kind: AnalyzerKind
    rizz_score: float
    main_character_score: float
    npc_level: float
    overall_score: float
    rank: RankTier
    breakdown: ScoreBreakdown
    analysis: str
    one_liner: str
    used_fallback: bool = False


DEFAULT_ONE_LINER = "AI is impressed! \U0001f525"


def _pick_base(
    text: str | None,
    gateway_scores: dict | None,
    rng: random.Random,
) -> tuple[float, bool]:
    explicit = extract_score(text, "score")
    if explicit is not None:
        return explicit, False
    overall = (gateway_scores or {}).get("overall")
    if isinstance(overall, (int, float)) and math.isfinite(overall):
        return float(overall), False
    return baseline_score(rng), True


def normalize_analysis(
    kind: AnalyzerKind,
    text: str | None,
    *,
    gateway_scores: dict | None = None,
    factors: ScoreFactors | None = None,
    rng: random.Random | None = None,
) -> ScanResult:
    """Run the full normalizer on one AI response.

    *text* may be empty or ``None`` (gateway failure); the baseline path
    then produces the score.
    """
    rng = rng or random.Random()
    text = text or ""
    base, used_fallback = _pick_base(text, gateway_scores, rng)
    if used_fallback:
        logger.debug("No explicit score in %s analysis — using baseline %.2f", kind, base)

    rizz = calculate_rizz_score(base, factors or ScoreFactors.randomized(rng), rng)
    main_character = _auxiliary(rng, MAIN_CHARACTER_RANGE)
    npc = _auxiliary(rng, NPC_LEVEL_RANGE)
    overall = round((main_character + rizz + (100 - npc)) / 3, 2)

    first_line = text.strip().split("\n", 1)[0].strip() if text.strip() else ""

    return ScanResult(
        kind=kind,
        rizz_score=rizz,
        main_character_score=main_character,
        npc_level=npc,
        overall_score=clamp_score(overall),
        rank=get_rank(rizz),
        breakdown=score_breakdown(kind, text),
        analysis=text,
        one_liner=first_line or DEFAULT_ONE_LINER,
        used_fallback=used_fallback,
    )


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScoreProgress:
    difference: float
    percent_change: float
    direction: str


def calculate_progress(old_score: float, new_score: float) -> ScoreProgress:
    """Change between two scans of the same user."""
    diff = round(new_score - old_score, 2)
    percent = round(diff / old_score * 100, 1) if old_score > 0 else 0.0
    direction = "up" if diff > 0 else "down" if diff < 0 else "same"
    return ScoreProgress(difference=diff, percent_change=percent, direction=direction)


_MOTIVATION: tuple[tuple[float, str], ...] = (
    (95, "You're absolutely crushing it! Keep that energy!"),
    (90, "Top tier rizz! You're in the elite club!"),
    (85, "Impressive! Just a few tweaks to perfection!"),
    (80, "Solid game! Keep pushing!"),
    (75, "Good foundation! Room for growth!"),
    (70, "You're on the right track! Keep improving!"),
)


def motivational_message(score: float) -> str:
    for threshold, message in _MOTIVATION:
        if score >= threshold:
            return message
    return "Everyone starts somewhere! Let's level up!"
