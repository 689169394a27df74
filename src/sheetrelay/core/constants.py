"""Global constants for sheetrelay.

Centralizes magic numbers used throughout the codebase,
making them discoverable, consistent, and easy to modify.
"""

# =============================================================================
# Exclusivity Markers
# =============================================================================

DEFAULT_LOCK_TOKEN = "現在操作中です"
"""Historical lock token prefixed to every marker; existing sheets carry it."""

MARKER_SEPARATOR = "_"
"""Separator between marker fields."""

# =============================================================================
# Scheduling Defaults
# =============================================================================

DEFAULT_BATCH_SIZE = 3
"""Tasks launched together in one batch."""

DEFAULT_STAGGER_DELAY_SECONDS = 5.0
"""Delay between consecutive launches inside one batch."""

DEFAULT_MAX_WORKERS = 3
"""Worker slots in the pool."""

# =============================================================================
# Timeouts (seconds)
# =============================================================================

SHORT_DISPATCH_TIMEOUT_SECONDS = 60.0
"""Deadline for one attempt of an ordinary job."""

LONG_DISPATCH_TIMEOUT_SECONDS = 2400.0
"""Deadline for one attempt of a long-running job (40 minutes)."""

DEFAULT_MARKER_TIMEOUT_SECONDS = 300.0
"""Age after which a marker without a known category is stale."""

# =============================================================================
# Wait Strategy
# =============================================================================

DEFAULT_CHECK_INTERVAL_SECONDS = 60.0
"""Interval between completion checks."""

DEFAULT_MAX_WAIT_SECONDS = 300.0
"""Maximum wait for ordinary jobs."""

LONG_MAX_WAIT_SECONDS = 2400.0
"""Maximum wait once a long-running job is detected."""

PROGRESS_REPORT_EVERY = 5
"""Progress is logged every Nth completion check."""

# =============================================================================
# Retry / Escalation
# =============================================================================

MAX_TOTAL_ATTEMPTS = 20
"""Hard cap on attempts for one task."""

ERROR_HISTORY_CAPACITY = 50
"""Entries kept in a retry engine's rolling failure history."""

TRUNCATE_ERROR_MESSAGE_CHARS = 200
"""Maximum characters for error message summaries."""
