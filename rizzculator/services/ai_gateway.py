"""
rizzculator.services.ai_gateway — Upstream language-model client
=================================================================

Stateless request/response access to an OpenAI-compatible chat
completions endpoint (Groq by default) over ``httpx``.

Every upstream failure is mapped to an :class:`AIGatewayError` with one
of a small set of categories.  The raw upstream text stays in
``detail`` for operators and logs; end users only ever see the
category's message.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any

import httpx

from rizzculator.config import DEFAULT_AI_API_URL, RizzConfig
from rizzculator.engine.scoring import AnalyzerKind

logger = logging.getLogger(__name__)

RATE_LIMITED = "rate_limited"
UNAVAILABLE = "unavailable"
MISCONFIGURED = "misconfigured"
BAD_REQUEST = "bad_request"

USER_MESSAGES: dict[str, str] = {
    RATE_LIMITED: "AI service rate limit reached. Try again in a moment.",
    UNAVAILABLE: "AI service temporarily unavailable. Please try again.",
    MISCONFIGURED: "AI service not configured. Check API configuration.",
    BAD_REQUEST: "Invalid messages format.",
}

HTTP_STATUS: dict[str, int] = {
    RATE_LIMITED: 429,
    UNAVAILABLE: 500,
    MISCONFIGURED: 500,
    BAD_REQUEST: 400,
}

CHAT_HISTORY_LIMIT = 10
MODERATION_EXCERPT_CHARS = 500


class AIGatewayError(Exception):
    """Upstream AI failure mapped to a user-facing category."""

    def __init__(self, category: str, detail: str = "") -> None:
        super().__init__(detail or category)
        self.category = category
        self.detail = detail

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.category, USER_MESSAGES[UNAVAILABLE])

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.category, 500)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
IMAGE_PROMPT = (
    "You are Rizzculator AI, a brutally honest but hilarious vibe analyzer.\n"
    "Rate this person's vibe on a scale of 1-100 and state it as 'Score: N'. "
    "Be funny, use Gen Z slang, and give specific observations.\n"
    "Keep your response to 2-3 sentences max. Be playful but not mean."
)

TEXT_PROMPTS: dict[AnalyzerKind, str] = {
    AnalyzerKind.LINKEDIN: (
        "You are a professional LinkedIn coach. Analyze this profile and provide:\n"
        "1. A professional score (0-100)\n2. Honest assessment\n3. 3 specific improvements\n"
        "Keep it constructive but real. 2-3 sentences max."
    ),
    AnalyzerKind.INSTAGRAM: (
        "You are a social media expert. Roast this Instagram bio with humor.\n"
        "Rate the cringe level (0-100). Be savage but funny. 2-3 sentences max."
    ),
    AnalyzerKind.DATING: (
        "You are a dating coach. Rate this profile (0-100) and give honest feedback.\n"
        "What's working? What's not? Be funny but helpful. 2-3 sentences max."
    ),
}

CHAT_PROMPT = (
    "You are Rizzculator AI, a witty and fun chatbot that helps people with dating "
    "advice and rizz tips.\nBe conversational, use Gen Z slang naturally, and keep "
    "responses short (2-3 sentences).\nBe funny and helpful. "
    "User: {username} (Rizz Score: {rizz_score})"
)

MODERATION_SYSTEM = "You are a content moderation AI. Be strict but fair."
MODERATION_PROMPT = (
    "Analyze if this content is appropriate for a social platform.\n"
    'Reply with only "SAFE" or "UNSAFE: [reason]".\n\nContent: {content}'
)

_BARE_NUMBER = re.compile(r"\b(\d{1,3})\b")


def _first_bare_score(text: str) -> float | None:
    """First standalone 1-3 digit number that fits the 0-100 scale."""
    for match in _BARE_NUMBER.finditer(text):
        value = int(match.group(1))
        if value <= 100:
            return float(value)
    return None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class AIGateway:
    """Async client for the upstream chat-completions API.

    Usage::

        gateway = AIGateway.from_env(cfg)
        reply = await gateway.analyze(AnalyzerKind.DATING, messages)
        await gateway.aclose()
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        api_url: str = DEFAULT_AI_API_URL,
        vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct",
        text_model: str = "llama-3.3-70b-versatile",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or None
        self.api_url = api_url
        self.vision_model = vision_model
        self.text_model = text_model
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_env(cls, cfg: RizzConfig) -> AIGateway:
        """Build a gateway from ``GROQ_API_KEY`` / ``AI_API_URL`` and *cfg*."""
        return cls(
            os.getenv("GROQ_API_KEY", "").strip(),
            api_url=os.getenv("AI_API_URL", "").strip() or cfg.ai_api_url,
            vision_model=cfg.vision_model,
            text_model=cfg.text_model,
            timeout=cfg.ai_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return self.api_key is not None

    async def aclose(self) -> None:
        await self._client.aclose()

    # -------------------------------------------------------------------
    # Raw completion
    # -------------------------------------------------------------------
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        temperature: float = 0.8,
        max_tokens: int = 400,
    ) -> str:
        """POST one chat completion and return the assistant text.

        Raises
        ------
        AIGatewayError
            On missing configuration, timeouts, upstream HTTP errors or a
            malformed response body.
        """
        if not self.configured:
            raise AIGatewayError(MISCONFIGURED, "GROQ_API_KEY not configured")

        try:
            resp = await self._client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                },
            )
        except httpx.TimeoutException as exc:
            raise AIGatewayError(UNAVAILABLE, f"upstream timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise AIGatewayError(UNAVAILABLE, f"upstream transport error: {exc}") from exc

        if resp.status_code == 429:
            raise AIGatewayError(RATE_LIMITED, resp.text)
        if resp.status_code in (401, 403):
            raise AIGatewayError(MISCONFIGURED, resp.text)
        if resp.status_code >= 400:
            raise AIGatewayError(UNAVAILABLE, f"HTTP {resp.status_code}: {resp.text}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise AIGatewayError(UNAVAILABLE, f"malformed upstream response: {exc}") from exc
        return (content or "").strip()

    # -------------------------------------------------------------------
    # Request types
    # -------------------------------------------------------------------
    async def analyze(
        self,
        kind: AnalyzerKind,
        messages: list[dict[str, Any]],
        user_profile: dict | None = None,
    ) -> dict[str, Any]:
        """Route a request by analyzer kind.

        Returns ``{"message": str, "scores": {"overall": float}?}``; the
        ``scores`` key is present only when the reply carried a number.
        """
        if not messages:
            raise AIGatewayError(BAD_REQUEST, "messages must be a non-empty list")

        if kind.is_image:
            text = await self.complete(
                [{"role": "system", "content": IMAGE_PROMPT}, *messages],
                model=self.vision_model, temperature=0.9, max_tokens=500,
            )
            return {"message": text or "Looking good! \U0001f525"}

        if kind in TEXT_PROMPTS:
            text = await self.complete(
                [{"role": "system", "content": TEXT_PROMPTS[kind]}, *messages],
                model=self.text_model, temperature=0.8, max_tokens=400,
            )
            reply: dict[str, Any] = {"message": text or "Not bad! \U0001f44d"}
            overall = _first_bare_score(text)
            if overall is not None:
                reply["scores"] = {"overall": overall}
            return reply

        return {"message": await self.chat(messages, user_profile)}

    async def chat(
        self,
        messages: list[dict[str, Any]],
        user_profile: dict | None = None,
    ) -> str:
        profile = user_profile or {}
        system = CHAT_PROMPT.format(
            username=profile.get("username") or "Anonymous",
            rizz_score=profile.get("rizzScore") or 0,
        )
        text = await self.complete(
            [{"role": "system", "content": system}, *messages[-CHAT_HISTORY_LIMIT:]],
            model=self.text_model, temperature=0.9, max_tokens=300,
        )
        return text or "Hey! What's up? \U0001f60a"

    async def moderate(self, content: str) -> str:
        """Ask for a ``SAFE`` / ``UNSAFE: reason`` verdict on *content*."""
        prompt = MODERATION_PROMPT.format(content=content[:MODERATION_EXCERPT_CHARS])
        return await self.complete(
            [
                {"role": "system", "content": MODERATION_SYSTEM},
                {"role": "user", "content": prompt},
            ],
            model=self.text_model, temperature=0.1, max_tokens=50,
        )
