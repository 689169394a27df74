"""Data models for failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .codes import FailureCategory


@dataclass(frozen=True)
class ClassifiedFailure:
    """A single failure with its classification.

    Attributes:
        category: The classified failure category.
        message: Human-readable failure description.
        vendor: Vendor profile that produced the classification.
        error_type: Exception class name when classified from an exception.
        matched_pattern: The pattern that matched, None for hints/fallback.
    """

    category: FailureCategory
    message: str
    vendor: str = "generic"
    error_type: str | None = None
    matched_pattern: str | None = None

    @property
    def forces_heavy(self) -> bool:
        return self.category.forces_heavy

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "category": self.category.value,
            "message": self.message,
            "vendor": self.vendor,
            "error_type": self.error_type,
            "matched_pattern": self.matched_pattern,
        }
