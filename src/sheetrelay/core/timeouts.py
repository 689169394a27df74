"""Shared timeout lookups for markers, waits and attempt deadlines.

The exclusivity guard, the wait strategy and the executor all ask the
same questions ("is this job long-running?", "how old may its marker
get?"); ``TimeoutTable`` answers them from one ``TimeoutConfig``.
"""

from __future__ import annotations

import re

from sheetrelay.core.config import TimeoutConfig

_SEPARATORS = re.compile(r"[\s_\-]+")


class TimeoutTable:
    """Category normalization and timeout lookup.

    Example:
        table = TimeoutTable()
        table.marker_timeout("Deep Research")    # 2400.0
        table.dispatch_timeout("deep-research")  # 2400.0
        table.dispatch_timeout(None)             # 60.0
    """

    def __init__(self, config: TimeoutConfig | None = None) -> None:
        self.config = config or TimeoutConfig()
        self._patterns = tuple(p.lower() for p in self.config.long_running_patterns)

    def normalize(self, category: str | None) -> str | None:
        """Normalize a job category: lower-case, separators removed, aliases applied."""
        if category is None:
            return None
        key = _SEPARATORS.sub("", category.strip().lower())
        if not key:
            return None
        return self.config.category_aliases.get(key, key)

    def is_long_running(self, text: str | None) -> bool:
        """Whether a capability or category names a long-running job."""
        if not text:
            return False
        lowered = text.lower()
        if any(p in lowered for p in self._patterns):
            return True
        normalized = self.normalize(text)
        return (
            normalized is not None
            and self.config.marker_timeouts.get(normalized, 0.0)
            >= self.config.long_timeout_seconds
        )

    def marker_timeout(self, category: str | None) -> float:
        """Age (seconds) after which a marker of this category is stale."""
        normalized = self.normalize(category)
        if normalized is None:
            return self.config.default_marker_timeout_seconds
        known = self.config.marker_timeouts.get(normalized)
        if known is not None:
            return known
        if self.is_long_running(category):
            return self.config.long_timeout_seconds
        return self.config.default_marker_timeout_seconds

    def dispatch_timeout(self, capability: str | None) -> float:
        """Per-attempt deadline for a task requesting this capability."""
        if self.is_long_running(capability):
            return self.config.long_timeout_seconds
        return self.config.short_timeout_seconds


__all__ = ["TimeoutTable"]
