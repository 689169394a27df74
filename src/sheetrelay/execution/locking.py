"""Exclusivity markers guarding output locations.

Before dispatching a task, the executor writes a marker into the task's
output location; any other dispatcher that reads a fresh marker there
backs off with ``busy``. The marker is replaced by the result on
success and cleared on terminal failure.

Marker text (both encodings parse, only the first is written):

    <token>_<YYYY-MM-DD>_<HH:MM:SS>_<owner>[_<category>]
    <token>_<ISO-8601 timestamp>_<owner>[_<category>]

The bare token with nothing after it is a legacy marker and is always
stale. Owner ids never contain the separator; the category is
everything after the owner and may.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from sheetrelay.core.config import LockConfig
from sheetrelay.core.constants import MARKER_SEPARATOR
from sheetrelay.core.logging import get_logger
from sheetrelay.core.models import sanitize_owner_id
from sheetrelay.core.timeouts import TimeoutTable
from sheetrelay.store.base import ResultStore

_logger = get_logger("lock")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}:\d{2}$")


def resolve_timezone(name: str) -> tzinfo:
    """Resolve an IANA zone name, mapping ``UTC`` to ``datetime.UTC``."""
    if name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


class MarkerEncoding(str, Enum):
    """Text encoding a marker was read from."""

    CURRENT = "current"
    """Separate date and time fields."""

    ISO = "iso"
    """Single ISO-8601 timestamp field."""

    LEGACY = "legacy"
    """Bare token with no timestamp."""


@dataclass(frozen=True)
class ExclusivityMarker:
    """A parsed marker.

    Attributes:
        owner_id: Dispatcher that wrote the marker (None for legacy markers).
        created_at: Timezone-aware creation time, None when missing or unparsable.
        job_category: Job category recorded with the marker.
        encoding: Encoding the marker was read from.
        raw: The marker text as stored.
    """

    owner_id: str | None
    created_at: datetime | None
    job_category: str | None
    encoding: MarkerEncoding
    raw: str

    def age_seconds(self, now: datetime) -> float | None:
        if self.created_at is None:
            return None
        return (now - self.created_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "job_category": self.job_category,
            "encoding": self.encoding.value,
        }


class MarkerCodec:
    """Reads and writes marker text."""

    def __init__(self, lock_token: str, timezone: tzinfo = UTC) -> None:
        self.lock_token = lock_token
        self.timezone = timezone
        self._prefix = lock_token + MARKER_SEPARATOR

    def is_marker(self, text: str | None) -> bool:
        """Whether a stored value is a marker rather than a result."""
        if not text:
            return False
        stripped = text.strip()
        return stripped == self.lock_token or stripped.startswith(self._prefix)

    def encode(
        self,
        owner_id: str,
        created_at: datetime,
        job_category: str | None = None,
    ) -> str:
        """Build marker text in the current encoding."""
        local = created_at.astimezone(self.timezone)
        fields = [
            self.lock_token,
            local.strftime("%Y-%m-%d"),
            local.strftime("%H:%M:%S"),
            sanitize_owner_id(owner_id),
        ]
        if job_category:
            fields.append(job_category)
        return MARKER_SEPARATOR.join(fields)

    def parse(self, text: str | None) -> ExclusivityMarker | None:
        """Parse marker text.

        Returns:
            The parsed marker, or None when ``text`` is not a marker.
        """
        if not self.is_marker(text):
            return None
        assert text is not None
        raw = text.strip()
        if raw == self.lock_token:
            return ExclusivityMarker(None, None, None, MarkerEncoding.LEGACY, raw)

        parts = raw[len(self._prefix):].split(MARKER_SEPARATOR)
        if (
            len(parts) >= 3
            and _DATE_RE.match(parts[0])
            and _TIME_RE.match(parts[1])
        ):
            created_at = self._parse_timestamp(f"{parts[0]}T{parts[1]}")
            return ExclusivityMarker(
                owner_id=parts[2] or None,
                created_at=created_at,
                job_category=MARKER_SEPARATOR.join(parts[3:]) or None,
                encoding=MarkerEncoding.CURRENT,
                raw=raw,
            )

        return ExclusivityMarker(
            owner_id=(parts[1] or None) if len(parts) > 1 else None,
            created_at=self._parse_timestamp(parts[0]),
            job_category=MARKER_SEPARATOR.join(parts[2:]) or None,
            encoding=MarkerEncoding.ISO,
            raw=raw,
        )

    def _parse_timestamp(self, value: str) -> datetime | None:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.timezone)
        return parsed


class LockStatus(str, Enum):
    """What currently occupies an output location."""

    FREE = "free"
    STALE = "stale"
    HELD = "held"
    ANSWERED = "answered"


@dataclass(frozen=True)
class LockCheck:
    """Result of inspecting an output location.

    Attributes:
        status: What occupies the location.
        current: Raw stored value.
        marker: Parsed marker, when the value is one.
    """

    status: LockStatus
    current: str | None
    marker: ExclusivityMarker | None = None

    @property
    def acquirable(self) -> bool:
        return self.status in (LockStatus.FREE, LockStatus.STALE)


@dataclass(frozen=True)
class LockAttempt:
    """Result of trying to place a marker.

    Attributes:
        acquired: Whether our marker is now in place.
        status: Location status observed before the write.
        marker_text: The marker written, when acquired.
        holder: Owner of the marker that blocked us, if any.
        reason: Why acquisition failed.
    """

    acquired: bool
    status: LockStatus
    marker_text: str | None = None
    holder: str | None = None
    reason: str | None = None


class ExclusivityGuard:
    """Places, checks and removes markers on output locations.

    Placeholder values (``PENDING``, ``N/A``) count as free, so they are
    overwritten like an empty location.

    Markers are written with ``ResultStore.compare_and_set`` against the
    value just read, so a store with an atomic CAS never lets two
    dispatchers both believe they own a location.
    """

    def __init__(
        self,
        store: ResultStore,
        config: LockConfig | None = None,
        timeouts: TimeoutTable | None = None,
        now: Callable[[], datetime] | None = None,
        placeholders: Iterable[str] = (),
    ) -> None:
        self.store = store
        self.config = config or LockConfig()
        self.timeouts = timeouts or TimeoutTable()
        self.placeholders = frozenset(p.strip().casefold() for p in placeholders)
        self.codec = MarkerCodec(
            self.config.lock_token, resolve_timezone(self.config.timezone)
        )
        self._now = now or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._now()

    def _as_marker(
        self, marker: ExclusivityMarker | str | None
    ) -> ExclusivityMarker | None:
        if isinstance(marker, ExclusivityMarker):
            return marker
        return self.codec.parse(marker)

    def marker_age(self, marker: ExclusivityMarker | str | None) -> float | None:
        """Age of a marker in seconds, None when it has no usable timestamp."""
        parsed = self._as_marker(marker)
        if parsed is None:
            return None
        return parsed.age_seconds(self.now())

    def is_stale(self, marker: ExclusivityMarker | str | None) -> bool:
        """Whether a marker has outlived the timeout for its job category."""
        parsed = self._as_marker(marker)
        if parsed is None:
            return True
        age = parsed.age_seconds(self.now())
        if age is None:
            return True
        return age > self.timeouts.marker_timeout(parsed.job_category)

    def remaining_seconds(self, marker: ExclusivityMarker | str | None) -> float:
        """Seconds until a marker goes stale (0.0 when already stale)."""
        parsed = self._as_marker(marker)
        if parsed is None:
            return 0.0
        age = parsed.age_seconds(self.now())
        if age is None:
            return 0.0
        return max(0.0, self.timeouts.marker_timeout(parsed.job_category) - age)

    def classify_value(self, value: str | None, owner_id: str | None = None) -> LockCheck:
        """Interpret a stored value without touching the store."""
        if not value or not value.strip():
            return LockCheck(LockStatus.FREE, value)
        marker = self.codec.parse(value)
        if marker is None:
            if value.strip().casefold() in self.placeholders:
                return LockCheck(LockStatus.FREE, value)
            return LockCheck(LockStatus.ANSWERED, value)
        if self.is_stale(marker):
            return LockCheck(LockStatus.STALE, value, marker)
        if (
            owner_id is not None
            and self.config.reclaim_own_markers
            and marker.owner_id == sanitize_owner_id(owner_id)
        ):
            return LockCheck(LockStatus.STALE, value, marker)
        return LockCheck(LockStatus.HELD, value, marker)

    async def inspect(self, location: str, owner_id: str | None = None) -> LockCheck:
        """Read a location and report what occupies it."""
        return self.classify_value(await self.store.read(location), owner_id)

    async def acquire(
        self,
        location: str,
        owner_id: str,
        job_category: str | None = None,
    ) -> LockAttempt:
        """Try to place a fresh marker on a location.

        Args:
            location: Output location to guard
            owner_id: This dispatcher's owner id
            job_category: Category recorded in the marker

        Returns:
            LockAttempt describing the outcome
        """
        check = await self.inspect(location, owner_id)
        if check.status is LockStatus.HELD:
            assert check.marker is not None
            _logger.info(
                "lock.busy",
                location=location,
                holder=check.marker.owner_id,
                remaining_seconds=round(self.remaining_seconds(check.marker), 1),
            )
            return LockAttempt(
                acquired=False,
                status=check.status,
                holder=check.marker.owner_id,
                reason="held by a fresh marker",
            )
        if check.status is LockStatus.ANSWERED:
            return LockAttempt(acquired=False, status=check.status, reason="already answered")

        if check.status is LockStatus.STALE:
            assert check.marker is not None
            _logger.warning(
                "lock.stale_reclaimed",
                location=location,
                previous_owner=check.marker.owner_id,
                encoding=check.marker.encoding.value,
                age_seconds=self.marker_age(check.marker),
            )

        marker_text = self.codec.encode(owner_id, self.now(), job_category)
        if not await self.store.compare_and_set(location, check.current, marker_text):
            _logger.info("lock.lost_race", location=location)
            return LockAttempt(acquired=False, status=check.status, reason="lost race")

        _logger.debug("lock.acquired", location=location, marker=marker_text)
        return LockAttempt(acquired=True, status=check.status, marker_text=marker_text)

    async def release(self, location: str, marker_text: str) -> bool:
        """Clear our marker, leaving anything else that replaced it in place.

        Returns:
            True if the marker was cleared
        """
        cleared = await self.store.compare_and_set(location, marker_text, "")
        if cleared:
            _logger.debug("lock.released", location=location)
        else:
            _logger.warning("lock.release_skipped", location=location)
        return cleared

    async def commit(self, location: str, marker_text: str, value: str) -> bool:
        """Replace our marker with the result.

        Returns:
            False if the marker was replaced in the meantime (another owner
            reclaimed it); the result is not written
        """
        committed = await self.store.compare_and_set(location, marker_text, value)
        if committed:
            _logger.debug("lock.committed", location=location, length=len(value))
        else:
            _logger.warning("lock.commit_lost", location=location)
        return committed


__all__ = [
    "ExclusivityGuard",
    "ExclusivityMarker",
    "LockAttempt",
    "LockCheck",
    "LockStatus",
    "MarkerCodec",
    "MarkerEncoding",
    "resolve_timezone",
]
