"""Statutory submission deadlines for AUSTRAC reports.

  Type A (TTR): 10 business days from the transaction (AML/CTF Act s 43)
  Type B (SMR): 3 business days from forming the suspicion (AML/CTF Act s 41)

All functions are pure given the calendar and the supplied ``now``.
"""

from datetime import date, datetime

from .calendar import BusinessCalendar
from .config import DeadlineConfig


class DeadlineCalculator:
    def __init__(
        self,
        calendar: BusinessCalendar,
        config: DeadlineConfig | None = None,
    ) -> None:
        self.calendar = calendar
        self.config = config or DeadlineConfig()

    def _origin_date(self, origin: date | datetime) -> date:
        if isinstance(origin, datetime):
            return self.calendar.local_date(origin)
        return origin

    def ttr_deadline(self, origin: date | datetime) -> date:
        """Type A deadline: 10 business days after the transaction."""
        return self.calendar.add_business_days(
            self._origin_date(origin), self.config.ttr_business_days
        )

    def smr_deadline(self, origin: date | datetime) -> date:
        """Type B deadline: 3 business days after the suspicion was formed."""
        return self.calendar.add_business_days(
            self._origin_date(origin), self.config.smr_business_days
        )

    def days_remaining(self, deadline: date, now: datetime | None = None) -> int:
        return self.calendar.business_days_remaining(deadline, self.calendar.today(now))

    def is_approaching(
        self, deadline: date, threshold_days: int, now: datetime | None = None
    ) -> bool:
        return self.days_remaining(deadline, now) <= threshold_days

    def is_passed(self, deadline: date, now: datetime | None = None) -> bool:
        return deadline < self.calendar.today(now)


def format_deadline(deadline: date) -> str:
    """Long-form en-AU date, e.g. 'Monday, 29 December 2025'."""
    return f"{deadline:%A}, {deadline.day} {deadline:%B %Y}"
