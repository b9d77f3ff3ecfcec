"""Time utilities: durations, instants and query windows."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ConfigurationError

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


# Lower bound for a window with no look-back; everything recorded is inside it.
OPEN_START = datetime.min.replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def parse_duration(text: str) -> timedelta:
    """
    Parse a Go-style duration string ("24h", "1h30m", "90s", "500ms", "0").
    Negative durations are rejected; a look-back is always measured backwards from now.
    """
    s = (text or "").strip()
    if not s:
        raise ConfigurationError("empty duration")
    if s == "0":
        return timedelta(0)

    pos = 0
    total = 0.0
    for m in _DURATION_PART_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos == 0 or pos != len(s):
        raise ConfigurationError(f"invalid duration: {text!r} (expected e.g. 24h, 1h30m, 90s)")
    return timedelta(seconds=total)


def parse_instant(text: str) -> datetime:
    """Parse an RFC3339 instant into an aware UTC datetime."""
    s = (text or "").strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as e:
        raise ConfigurationError(f"invalid RFC3339 time: {text!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_instant(dt: Optional[datetime]) -> str:
    """RFC3339 at second precision in UTC, or N/A when unset."""
    if dt is None:
        return "N/A"
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if ensure_utc(self.start) >= ensure_utc(self.end):
            raise ConfigurationError(
                f"window start {format_instant(self.start)} must be before end {format_instant(self.end)}"
            )

    def contains(self, ts: datetime) -> bool:
        ts = ensure_utc(ts)
        return ensure_utc(self.start) <= ts <= ensure_utc(self.end)

    @property
    def open_start(self) -> bool:
        return self.start == OPEN_START

    @classmethod
    def from_flags(
        cls,
        start: Optional[timedelta],
        end: timedelta = timedelta(0),
        at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "TimeWindow":
        """
        end is a look-back from now; at, when given, is an absolute instant that
        replaces it. start is a look-back from the end anchor (at, or now), so
        --start 72h --at T covers the 72 hours before T. start=None leaves the
        window open at the bottom.
        """
        now = ensure_utc(now or utc_now())
        anchor = ensure_utc(at) if at is not None else now
        end_time = anchor if at is not None else now - end
        start_time = anchor - start if start is not None else OPEN_START
        return cls(start=start_time, end=end_time)
