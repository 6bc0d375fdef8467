"""
rizzculator.config — YAML Configuration Loader
================================================

Reads ``config.yaml`` for **non-secret** settings (AI model names, rate
limits, moderation toggle, logging).  Secrets such as ``DATABASE_URL``,
``JWT_SECRET`` and ``GROQ_API_KEY`` come from the environment (``.env``).

Usage::

    from rizzculator.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.rate_limit_requests)   # 20
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_AI_API_URL = "https://api.groq.com/openai/v1/chat/completions"


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RizzConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    app_name: str = "Rizzculator"

    # AI gateway
    ai_api_url: str = DEFAULT_AI_API_URL
    vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    text_model: str = "llama-3.3-70b-versatile"
    ai_timeout_seconds: float = 30.0

    # Rate limiting (per caller, sliding window)
    rate_limit_requests: int = 20
    rate_limit_window_seconds: int = 60

    # Moderation
    ai_moderation: bool = True

    # Gamification
    grant_achievement_xp: bool = False

    # Ops
    debug: bool = False
    log_level: str = "INFO"


def _as_bool(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false (got {value!r})")
    return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RizzConfig:
    """Read *path* and return a :class:`RizzConfig` instance.

    Every key is optional; missing keys keep their dataclass defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a flag is not a YAML boolean (a quoted "false" is a string).
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    ai = raw.get("ai", {}) or {}
    limits = raw.get("rate_limit", {}) or {}
    defaults = RizzConfig()

    return RizzConfig(
        app_name=raw.get("app_name", defaults.app_name),
        ai_api_url=ai.get("api_url", defaults.ai_api_url),
        vision_model=ai.get("vision_model", defaults.vision_model),
        text_model=ai.get("text_model", defaults.text_model),
        ai_timeout_seconds=float(ai.get("timeout_seconds", defaults.ai_timeout_seconds)),
        rate_limit_requests=int(limits.get("requests", defaults.rate_limit_requests)),
        rate_limit_window_seconds=int(
            limits.get("window_seconds", defaults.rate_limit_window_seconds)
        ),
        ai_moderation=_as_bool(raw, "ai_moderation", defaults.ai_moderation),
        grant_achievement_xp=_as_bool(
            raw, "grant_achievement_xp", defaults.grant_achievement_xp
        ),
        debug=_as_bool(raw, "debug", defaults.debug),
        log_level=str(raw.get("log_level", defaults.log_level)).upper(),
    )
