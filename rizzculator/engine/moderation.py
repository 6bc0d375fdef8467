"""
rizzculator.engine.moderation — Content safety filter
=======================================================

Gates user text (bios, messages, profile text) before storage.  Checks
short-circuit in order:

1. length over 5000 characters
2. any character repeated 11+ times in a row
3. static banned-pattern list
4. AI verdict (only when a gateway is configured)

Steps 1–3 are local and always run.  Step 4 fails **open**: an
infrastructure hiccup must not block legitimate content.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rizzculator.services.ai_gateway import AIGateway

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5000
_REPEATED_CHARS = re.compile(r"(.)\1{10,}", re.DOTALL)

BANNED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(explicit|harmful|hate)\b", re.IGNORECASE),
    re.compile(r"\b(kys|kill\s+yourself)\b", re.IGNORECASE),
)

REASON_TOO_LONG = "Content too long"
REASON_SPAM = "Potential spam detected"
REASON_INAPPROPRIATE = "Contains inappropriate content"
REASON_AI_DEFAULT = "Flagged by AI moderation"


@dataclass(frozen=True, slots=True)
class ModerationResult:
    safe: bool
    reason: str | None
    content: str | None

    @classmethod
    def ok(cls, content: str) -> ModerationResult:
        return cls(safe=True, reason=None, content=content)

    @classmethod
    def flagged(cls, reason: str) -> ModerationResult:
        return cls(safe=False, reason=reason, content=None)

    def to_dict(self) -> dict:
        return {"safe": self.safe, "reason": self.reason, "content": self.content}


def check_local(text: str) -> ModerationResult:
    """Deterministic checks 1–3.  No network."""
    if len(text) > MAX_CONTENT_LENGTH:
        return ModerationResult.flagged(REASON_TOO_LONG)
    if _REPEATED_CHARS.search(text):
        return ModerationResult.flagged(REASON_SPAM)
    for pattern in BANNED_PATTERNS:
        if pattern.search(text):
            return ModerationResult.flagged(REASON_INAPPROPRIATE)
    return ModerationResult.ok(text)


def parse_verdict(verdict: str) -> str | None:
    """Return the flag reason for an ``UNSAFE`` verdict, None when safe.

    Anything that doesn't start with ``UNSAFE`` counts as safe.
    """
    cleaned = verdict.strip()
    if not cleaned.upper().startswith("UNSAFE"):
        return None
    reason = cleaned[len("UNSAFE"):].lstrip(" :").strip()
    return reason or REASON_AI_DEFAULT


class ModerationFilter:
    """Local checks plus an optional AI verdict.

    Parameters
    ----------
    gateway : AI gateway used for step 4; None or unconfigured skips it.
    use_ai : Global toggle for step 4 (``ai_moderation`` in config).
    """

    def __init__(self, gateway: AIGateway | None = None, *, use_ai: bool = True) -> None:
        self.gateway = gateway
        self.use_ai = use_ai

    @property
    def ai_enabled(self) -> bool:
        return self.use_ai and self.gateway is not None and self.gateway.configured

    async def check(self, text: str) -> ModerationResult:
        result = check_local(text)
        if not result.safe or not self.ai_enabled:
            return result

        try:
            verdict = await self.gateway.moderate(text)
        except Exception:
            # Fail open: local checks already passed.
            logger.warning("AI moderation unavailable — allowing content", exc_info=True)
            return result

        reason = parse_verdict(verdict)
        if reason is not None:
            logger.info("AI moderation flagged content: %s", reason)
            return ModerationResult.flagged(reason)
        return result
