"""Australian business-day calendar for statutory reporting deadlines.

A business day is a day that is not a Saturday or Sunday and not a national
public holiday (AML/CTF Act s 5). Holidays are the fixed-date national
holidays plus Good Friday and Easter Monday, derived from Easter Sunday.

No "observed" substitution days are applied: a holiday falling on a weekend
does not move to the following Monday.

"Today" is always the calendar date in the configured legal time zone
(default Australia/Sydney), never the host's local zone.
"""

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from .config import CalendarConfig

WEEKEND_DAYS = frozenset({5, 6})  # Saturday, Sunday


def easter_sunday(year: int) -> date:
    """Calculate Easter Sunday using the Anonymous Gregorian algorithm."""
    a = year % 19
    b = year // 100
    c = year % 100
    d = b // 4
    e = b % 4
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i = c // 4
    k = c % 4
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month = (h + l - 7 * m + 114) // 31
    day = ((h + l - 7 * m + 114) % 31) + 1
    return date(year, month, day)


def good_friday(year: int) -> date:
    return easter_sunday(year) - timedelta(days=2)


def easter_monday(year: int) -> date:
    return easter_sunday(year) + timedelta(days=1)


class BusinessCalendar:
    """Weekend, fixed-holiday, and Easter-aware business-day arithmetic."""

    def __init__(self, config: CalendarConfig | None = None) -> None:
        self.config = config or CalendarConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self._holiday_cache: dict[int, dict[date, str]] = {}

    # ------------------------------------------------------------------
    # Holidays
    # ------------------------------------------------------------------

    def _compute_holidays(self, year: int) -> dict[date, str]:
        holidays: dict[date, str] = {}
        for month, day, name in self.config.fixed_holidays:
            holidays[date(year, month, day)] = name
        if self.config.include_good_friday:
            holidays[good_friday(year)] = "Good Friday"
        if self.config.include_easter_monday:
            holidays[easter_monday(year)] = "Easter Monday"
        return holidays

    def _holidays(self, year: int) -> dict[date, str]:
        if year not in self._holiday_cache:
            self._holiday_cache[year] = self._compute_holidays(year)
        return self._holiday_cache[year]

    def holidays_for_year(self, year: int) -> list[tuple[date, str]]:
        """All public holidays in a year, sorted by date."""
        return sorted(self._holidays(year).items())

    def holiday_name(self, d: date) -> str | None:
        return self._holidays(d.year).get(d)

    def is_holiday(self, d: date) -> bool:
        return d in self._holidays(d.year)

    def is_weekend(self, d: date) -> bool:
        return d.weekday() in WEEKEND_DAYS

    def is_business_day(self, d: date) -> bool:
        if self.is_weekend(d):
            return False
        return not self.is_holiday(d)

    # ------------------------------------------------------------------
    # Reference "today"
    # ------------------------------------------------------------------

    def local_date(self, dt: datetime) -> date:
        """Calendar date of a timestamp in the legal time zone.

        Naive datetimes are taken to be UTC.
        """
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(self.tz).date()

    def today(self, now: datetime | None = None) -> date:
        return self.local_date(now or datetime.now(UTC))

    def start_of_day(self, d: date) -> datetime:
        """Midnight at the start of ``d`` in the legal time zone, as UTC."""
        return datetime(d.year, d.month, d.day, tzinfo=self.tz).astimezone(UTC)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add_business_days(self, start: date, days: int) -> date:
        """Walk forward one calendar day at a time, counting only business days.

        ``add_business_days(d, 0) == d`` even when ``d`` is not a business day.
        """
        if days < 0:
            raise ValueError("days must be non-negative")

        current = start
        added = 0
        while added < days:
            current += timedelta(days=1)
            if self.is_business_day(current):
                added += 1
        return current

    def business_days_between(self, start: date, end: date) -> int:
        """Count business days between two dates (start exclusive, end inclusive)."""
        if start >= end:
            return 0

        count = 0
        current = start
        while current < end:
            current += timedelta(days=1)
            if self.is_business_day(current):
                count += 1
        return count

    def business_days_remaining(self, deadline: date, today: date | None = None) -> int:
        """Business days left until ``deadline``; 0 once it is today or past."""
        if today is None:
            today = self.today()
        return self.business_days_between(today, deadline)
