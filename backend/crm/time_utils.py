from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class BusinessClock:
    """
    Single source of "today" for calendar-keyed rules (daily quotas).

    Business dates are calendar dates in the configured timezone; the
    database stores UTC-naive timestamps, so day_bounds() converts a
    business date back into a UTC window.
    """
    tz_name: str = "Asia/Seoul"

    @property
    def tz(self):
        return pytz.timezone(self.tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def business_date(self, moment: datetime) -> date:
        """Business date of a UTC-naive timestamp."""
        if moment.tzinfo is None:
            moment = pytz.utc.localize(moment)
        return moment.astimezone(self.tz).date()

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """UTC-naive [start, end) covering one business day."""
        # each midnight localized on its own; offsets differ across DST changes
        start_local = self.tz.localize(datetime.combine(day, time.min))
        end_local = self.tz.localize(datetime.combine(day + timedelta(days=1), time.min))
        return (
            start_local.astimezone(pytz.utc).replace(tzinfo=None),
            end_local.astimezone(pytz.utc).replace(tzinfo=None),
        )


def business_clock() -> BusinessClock:
    """Clock configured for the current app (falls back to KST outside a request)."""
    from flask import current_app, has_app_context

    if has_app_context():
        return current_app.extensions.get("business_clock") or BusinessClock(
            current_app.config.get("BUSINESS_TIMEZONE", "Asia/Seoul")
        )
    return BusinessClock()
