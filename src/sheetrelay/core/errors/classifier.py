"""Pattern-based failure classification with vendor-specific tables.

One ``ErrorClassifier`` serves every external service. What differs per
vendor (extra patterns, per-category retry caps) lives in a
``VendorProfile``; the common patterns below apply to all of them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sheetrelay.core.constants import TRUNCATE_ERROR_MESSAGE_CHARS
from sheetrelay.core.logging import get_logger

from .codes import FailureCategory
from .exceptions import WorkerError
from .models import ClassifiedFailure

_logger = get_logger("errors")


# =============================================================================
# Common pattern strings, checked after any vendor-specific rules.
# Order matters: the first matching category wins.
# =============================================================================

_RATE_LIMIT_PATTERNS: list[str] = [
    r"rate.?limit",
    r"too many requests",
    r"\b429\b",
    r"usage.?limit",
    r"quota",
    r"api limit",
    r"try again later",
    r"制限を超えました",
]

_SESSION_PATTERNS: list[str] = [
    r"session.{0,10}(expired|invalid|ended)",
    r"\bsession\b",
    r"セッション",
]

_AUTH_PATTERNS: list[str] = [
    r"unauthori[sz]ed",
    r"authentication",
    r"log.?in",
    r"sign.?in",
    r"\b401\b",
    r"ログイン",
    r"認証",
]

_NETWORK_PATTERNS: list[str] = [
    r"network",
    r"fetch",
    r"connection.?(refused|reset|closed|timed?.?out)",
    r"timeout",
    r"timed out",
    r"ECONNREFUSED",
    r"ETIMEDOUT",
    r"ENOTFOUND",
    r"service.?unavailable",
    r"\b50[234]\b",
]

_INTERFACE_TIMING_PATTERNS: list[str] = [
    r"element not found",
    r"selector",
    r"querySelector",
    r"\bclick",
    r"\bbutton\b",
    r"\binput\b",
    r"did not respond",
    r"要素が見つかりません",
    r"まで待機",
]

_FUNCTIONAL_PATTERNS: list[str] = [
    r"deep.?research",
    r"canvas",
    r"agent.?mode",
    r"mode.{0,10}(failed|unavailable|not available)",
    r"ディープリサーチ",
    r"エージェント",
]


@dataclass(frozen=True)
class CategoryRule:
    """Patterns for one category plus an optional per-category retry cap.

    Attributes:
        category: Category assigned when any pattern matches.
        patterns: Case-insensitive regex strings.
        max_retries: Attempt cap for this category; None defers to the
            engine-wide cap.
    """

    category: FailureCategory
    patterns: tuple[str, ...] = ()
    max_retries: int | None = None


@dataclass(frozen=True)
class VendorProfile:
    """Vendor-specific classification table.

    Attributes:
        name: Vendor identifier, matching ``Task.job_type``.
        rules: Vendor-specific rules, checked before the common patterns.
            Rules with no patterns only contribute a retry cap.
    """

    name: str
    rules: tuple[CategoryRule, ...] = ()

    def max_retries_for(self, category: FailureCategory) -> int | None:
        """Return the vendor's attempt cap for a category, if any."""
        for rule in self.rules:
            if rule.category is category and rule.max_retries is not None:
                return rule.max_retries
        return None


_COMMON_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(FailureCategory.RATE_LIMIT, tuple(_RATE_LIMIT_PATTERNS)),
    CategoryRule(FailureCategory.SESSION_EXPIRED, tuple(_SESSION_PATTERNS)),
    CategoryRule(FailureCategory.AUTH_EXPIRED, tuple(_AUTH_PATTERNS)),
    CategoryRule(FailureCategory.FUNCTIONAL, tuple(_FUNCTIONAL_PATTERNS)),
    CategoryRule(FailureCategory.NETWORK, tuple(_NETWORK_PATTERNS)),
    CategoryRule(FailureCategory.INTERFACE_TIMING, tuple(_INTERFACE_TIMING_PATTERNS)),
)

# Per-service retry caps shared by the chat vendors
_CHAT_SERVICE_CAPS: tuple[CategoryRule, ...] = (
    CategoryRule(FailureCategory.RATE_LIMIT, max_retries=10),
    CategoryRule(FailureCategory.AUTH_EXPIRED, max_retries=5),
    CategoryRule(FailureCategory.SESSION_EXPIRED, max_retries=5),
    CategoryRule(FailureCategory.NETWORK, max_retries=8),
    CategoryRule(FailureCategory.INTERFACE_TIMING, max_retries=10),
    CategoryRule(FailureCategory.GENERAL, max_retries=8),
)

VENDOR_PROFILES: dict[str, VendorProfile] = {
    "generic": VendorProfile(name="generic"),
    "chatgpt": VendorProfile(name="chatgpt", rules=_CHAT_SERVICE_CAPS),
    "claude": VendorProfile(
        name="claude",
        rules=(
            CategoryRule(
                FailureCategory.FUNCTIONAL,
                (r"canvas", r"artifact", r"deep.?research", r"research.{0,10}failed"),
                max_retries=12,
            ),
            *_CHAT_SERVICE_CAPS,
        ),
    ),
    "gemini": VendorProfile(
        name="gemini",
        rules=(
            CategoryRule(
                FailureCategory.AUTH_EXPIRED,
                (r"google.?auth", r"please sign in", r"ログインして"),
                max_retries=5,
            ),
            CategoryRule(
                FailureCategory.SESSION_EXPIRED,
                (r"session invalid", r"セッションが期限切れ", r"セッション無効"),
                max_retries=5,
            ),
            *_CHAT_SERVICE_CAPS,
        ),
    ),
    "genspark": VendorProfile(
        name="genspark",
        rules=(
            CategoryRule(
                FailureCategory.FUNCTIONAL,
                (
                    r"search (failed|error)",
                    r"no results",
                    r"empty results",
                    r"検索に失敗",
                    r"検索できませんでした",
                    r"結果なし",
                    r"結果が見つかりません",
                ),
                max_retries=10,
            ),
            CategoryRule(
                FailureCategory.NETWORK,
                (r"platform error", r"genspark error", r"プラットフォームエラー"),
                max_retries=8,
            ),
            CategoryRule(FailureCategory.AUTH_EXPIRED, max_retries=5),
            CategoryRule(FailureCategory.INTERFACE_TIMING, max_retries=10),
            CategoryRule(FailureCategory.GENERAL, max_retries=8),
        ),
    ),
}


def get_vendor_profile(name: str | None) -> VendorProfile:
    """Look up a vendor profile by name, falling back to ``generic``."""
    if not name:
        return VENDOR_PROFILES["generic"]
    return VENDOR_PROFILES.get(name.strip().lower(), VENDOR_PROFILES["generic"])


def _compile(patterns: tuple[str, ...]) -> re.Pattern[str] | None:
    if not patterns:
        return None
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


class ErrorClassifier:
    """Classifies worker failures into ``FailureCategory`` values.

    Classification order:
    1. An explicit category hint on ``WorkerError``.
    2. Vendor-specific rules.
    3. Common pattern rules.
    4. Exception-type fallback (``TimeoutError``/``ConnectionError`` → network).
    5. ``general``.
    """

    def __init__(self, profile: VendorProfile | str = "generic") -> None:
        if isinstance(profile, str):
            profile = get_vendor_profile(profile)
        self.profile = profile
        self._compiled: list[tuple[CategoryRule, re.Pattern[str]]] = []
        for rule in (*profile.rules, *_COMMON_RULES):
            compiled = _compile(rule.patterns)
            if compiled is not None:
                self._compiled.append((rule, compiled))

    def classify(
        self,
        failure: BaseException | str,
        context: Mapping[str, Any] | None = None,
    ) -> ClassifiedFailure:
        """Classify a failure.

        Args:
            failure: The raised exception, or the error string a worker
                returned in a failed result.
            context: Optional extra fields included in the log entry.

        Returns:
            ClassifiedFailure for the failure.
        """
        if isinstance(failure, BaseException):
            message = str(failure) or type(failure).__name__
            error_type: str | None = type(failure).__name__
        else:
            message = failure or "unknown failure"
            error_type = None

        result = self._classify(failure, message, error_type)
        _logger.debug(
            "failure_classified",
            category=result.category.value,
            vendor=result.vendor,
            error_type=error_type,
            pattern=result.matched_pattern,
            message=message[:TRUNCATE_ERROR_MESSAGE_CHARS],
            **dict(context or {}),
        )
        return result

    def _classify(
        self,
        failure: BaseException | str,
        message: str,
        error_type: str | None,
    ) -> ClassifiedFailure:
        if isinstance(failure, WorkerError) and failure.category is not None:
            return ClassifiedFailure(
                category=failure.category,
                message=message,
                vendor=self.profile.name,
                error_type=error_type,
            )

        for rule, pattern in self._compiled:
            match = pattern.search(message)
            if match:
                return ClassifiedFailure(
                    category=rule.category,
                    message=message,
                    vendor=self.profile.name,
                    error_type=error_type,
                    matched_pattern=match.group(0),
                )

        if isinstance(failure, (TimeoutError, ConnectionError)):
            category = FailureCategory.NETWORK
        else:
            category = FailureCategory.GENERAL
        return ClassifiedFailure(
            category=category,
            message=message,
            vendor=self.profile.name,
            error_type=error_type,
        )
