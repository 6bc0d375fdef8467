"""
rizzculator.errors — Service-layer exception types
====================================================

Services raise these; API routes translate them into HTTP responses.
"""

from __future__ import annotations


class RizzError(Exception):
    """Base class for all errors raised by Rizzculator services."""


class ValidationError(RizzError):
    """Input rejected locally before any network or DB call."""


class NotFoundError(RizzError):
    """A referenced user or message does not exist."""


class AlreadyDoneError(RizzError):
    """Benign duplicate (e.g. a second upvote for the same pair)."""


class StaleScanError(RizzError):
    """A scan response arrived after its request was superseded or cancelled."""
