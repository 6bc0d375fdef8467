"""
Rizzculator — AI vibe scoring, gamification and direct messaging
==================================================================
Turns free-text AI feedback on selfies, chats and profiles into
normalized scores, ranks and levels, rewards users with streaks and
achievements, and streams direct messages and presence to clients.

Package layout::

    rizzculator/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Rarity palette, level curve, scan XP
    ├── errors.py          # Service-layer exceptions
    ├── logging_setup.py   # Root logger format
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # users, score_history, upvotes, messages, …
    ├── engine/
    │   ├── scoring.py     # Score normalizer, rank tiers, breakdowns
    │   ├── achievements.py # Achievement catalog + unlock predicates
    │   ├── streak.py      # Daily login streak tracker
    │   ├── moderation.py  # Local + AI content filter
    │   └── broker.py      # Change-feed pub/sub + PG LISTEN/NOTIFY bridge
    ├── services/
    │   ├── ai_gateway.py        # Upstream chat-completions client
    │   ├── scan_service.py      # Atomic scoring event + stale-scan guard
    │   ├── user_service.py      # Profiles, logins, upvotes, leaderboard
    │   └── messaging_service.py # DMs, conversations, presence, live queries
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT identity + shared resources
        ├── rate_limit.py  # Per-caller sliding window
        └── routes/        # AI, public, social and messaging endpoints
"""

__version__ = "0.1.0"
