"""Failure categories, escalation tiers and recovery actions.

Contains the classification enums used throughout sheetrelay.

Failure Taxonomy
================

Every failure raised during a single attempt is mapped to one category.
All categories except ``timeout`` are retriable up to the attempt cap.

    | Category | Meaning | Forces heavy tier |
    |----------|---------|-------------------|
    | rate_limit | Service throttled the account | Yes |
    | auth_expired | Login/credentials no longer valid | Yes |
    | session_expired | Service session dropped | Yes |
    | network | Connectivity or transport failure | No |
    | interface_timing | Target UI did not respond as expected | No |
    | functional | Job-specific feature (named mode) failed | No |
    | general | Anything unrecognised | No |
    | timeout | Attempt deadline expired (terminal) | n/a |

Escalation Tiers
================

    | Tier | Attempts | Delays (s) | Recovery action |
    |------|----------|------------|-----------------|
    | lightweight | 1-5 | 1, 2, 5, 10, 15 | retry-same-worker |
    | moderate | 6-8 | 30, 60, 120 | refresh-worker |
    | heavy | 9-20 | 300, 900, 1800, 3600, 7200 | recreate-worker |
"""

from __future__ import annotations

from enum import Enum


class FailureCategory(str, Enum):
    """High-level failure categories driving escalation."""

    RATE_LIMIT = "rate_limit"
    """Service throttling; lightweight retry cannot help."""

    AUTH_EXPIRED = "auth_expired"
    """Authentication expired; the worker must be rebuilt."""

    SESSION_EXPIRED = "session_expired"
    """Session dropped; the worker must be rebuilt."""

    NETWORK = "network"
    """Connectivity or transport failure."""

    INTERFACE_TIMING = "interface_timing"
    """The worker reported that its target UI did not respond in time."""

    FUNCTIONAL = "functional"
    """A job-specific feature (e.g. a specialised mode) failed."""

    GENERAL = "general"
    """Fallback for unrecognised failures."""

    TIMEOUT = "timeout"
    """Attempt deadline expired. Terminal, never retried."""

    @property
    def forces_heavy(self) -> bool:
        """Whether this category escalates straight to the heavy tier."""
        return self in _FORCED_HEAVY

    @property
    def retriable(self) -> bool:
        return self is not FailureCategory.TIMEOUT


_FORCED_HEAVY = frozenset({
    FailureCategory.RATE_LIMIT,
    FailureCategory.AUTH_EXPIRED,
    FailureCategory.SESSION_EXPIRED,
})


class EscalationTier(str, Enum):
    """Escalation tiers, ordered from cheapest to most disruptive."""

    LIGHTWEIGHT = "lightweight"
    MODERATE = "moderate"
    HEAVY = "heavy"


class RecoveryAction(str, Enum):
    """What to do with the bound worker before the next attempt."""

    RETRY_SAME_WORKER = "retry-same-worker"
    REFRESH_WORKER = "refresh-worker"
    RECREATE_WORKER = "recreate-worker"
