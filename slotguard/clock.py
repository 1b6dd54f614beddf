from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_MS = dt.timedelta(milliseconds=1)


def now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_aware(instant: dt.datetime) -> dt.datetime:
    # Naive timestamps coming from the provider/state file are UTC.
    if instant.tzinfo is None:
        return instant.replace(tzinfo=dt.timezone.utc)
    return instant


def ms_between(start: dt.datetime, end: dt.datetime) -> int:
    """Milliseconds from start to end (negative when end is earlier)."""
    return int((end - start) / _MS)


@dataclass(frozen=True)
class FacilityClock:
    """Converts absolute instants into the facility's wall time.

    Local values are naive datetimes: they are only compared with each other,
    so subtraction gives wall-clock distance in the facility's timezone.
    """

    tz_name: str

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.tz_name)

    def to_local(self, instant: dt.datetime) -> dt.datetime:
        return ensure_aware(instant).astimezone(self.tz).replace(tzinfo=None)

    def format_time_only(self, instant: dt.datetime) -> str:
        local = self.to_local(instant)
        hour = local.hour % 12 or 12
        suffix = "AM" if local.hour < 12 else "PM"
        return f"{hour}:{local.minute:02d} {suffix}"


def validate_tz(tz_name: str) -> str:
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise RuntimeError(f"Invalid FACILITY_TZ value: {tz_name!r}. Expected IANA timezone name.") from e
    return tz_name
