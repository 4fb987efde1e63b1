"""Compliance engine configuration with regulatory citations.

Every statutory window, alert threshold, and fallback bound is configurable.
Each default is documented with the regulatory basis that justifies its value.

References:
- AML/CTF Act 2006 (Cth) s 43: Threshold transaction reports (10 business days)
- AML/CTF Act 2006 (Cth) s 41: Suspicious matter reports (3 business days)
- AML/CTF Act 2006 (Cth) s 5: "business day" excludes weekends and public holidays
- AML/CTF Rules Chapter 15: Enhanced customer due diligence
"""

import os
from dataclasses import dataclass, field


@dataclass
class CalendarConfig:
    """Business-day calendar for statutory deadlines.

    Regulatory basis: AML/CTF Act s 5: a business day is a day that is not
    a Saturday, Sunday or public holiday. Only national holidays are used;
    state-specific days are not recognised by AUSTRAC for deadline purposes.
    """

    # Legal time zone of the reporting entity. "Today" is always the date in
    # this zone, never the host's local zone.
    timezone: str = "Australia/Sydney"

    # (month, day, name)
    fixed_holidays: list[tuple[int, int, str]] = field(
        default_factory=lambda: [
            (1, 1, "New Year's Day"),
            (1, 26, "Australia Day"),
            (4, 25, "ANZAC Day"),
            (12, 25, "Christmas Day"),
            (12, 26, "Boxing Day"),
        ]
    )

    include_good_friday: bool = True
    include_easter_monday: bool = True


@dataclass
class DeadlineConfig:
    """Statutory submission windows and alerting thresholds.

    Regulatory basis: AML/CTF Act s 43(2): TTR within 10 business days of
    the transaction. s 41(2)(a): SMR within 3 business days of forming the
    suspicion (24 hours for terrorism financing, handled outside this engine).
    """

    ttr_business_days: int = 10
    smr_business_days: int = 3

    # Alert windows in business days remaining (inclusive)
    ttr_alert_window_days: int = 5
    smr_alert_window_days: int = 2

    # Severity escalation: at or below these values an alert is critical
    ttr_critical_days: int = 2
    smr_critical_days: int = 1


@dataclass
class FxConfig:
    """Currency normalization for reported amounts.

    Regulatory basis: AML/CTF Rules 19.2: reports must state amounts in
    Australian dollars. A cached rate may stand in for a live rate for a
    bounded period only; beyond that no conversion is reported.
    """

    reporting_currency: str = "AUD"
    max_cache_age_days: int = 7
    fetch_timeout_seconds: float = 10.0


@dataclass
class NotificationConfig:
    """Outbound alert delivery."""

    send_timeout_seconds: float = 15.0
    compliance_recipients: list[str] = field(default_factory=list)
    management_recipients: list[str] = field(default_factory=list)
    admin_base_url: str = "http://localhost:3000"


@dataclass
class ThresholdConfig:
    """Reporting thresholds.

    Regulatory basis: AML/CTF Act s 43: physical currency transfers of
    AUD 10,000 or more are threshold transactions.
    """

    ttr_threshold_aud: float = 10_000.0


@dataclass
class ComplianceConfig:
    """Top-level compliance engine configuration."""

    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    deadlines: DeadlineConfig = field(default_factory=DeadlineConfig)
    fx: FxConfig = field(default_factory=FxConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)

    @classmethod
    def from_env(cls) -> "ComplianceConfig":
        """Load config with env var overrides (COMPLIANCE_ prefix)."""
        config = cls()

        if v := os.getenv("COMPLIANCE_TIMEZONE"):
            config.calendar.timezone = v

        # Deadline overrides
        if v := os.getenv("COMPLIANCE_TTR_BUSINESS_DAYS"):
            config.deadlines.ttr_business_days = int(v)
        if v := os.getenv("COMPLIANCE_SMR_BUSINESS_DAYS"):
            config.deadlines.smr_business_days = int(v)
        if v := os.getenv("COMPLIANCE_TTR_ALERT_WINDOW_DAYS"):
            config.deadlines.ttr_alert_window_days = int(v)
        if v := os.getenv("COMPLIANCE_SMR_ALERT_WINDOW_DAYS"):
            config.deadlines.smr_alert_window_days = int(v)

        # FX overrides
        if v := os.getenv("COMPLIANCE_REPORTING_CURRENCY"):
            config.fx.reporting_currency = v.upper()
        if v := os.getenv("COMPLIANCE_FX_MAX_CACHE_AGE_DAYS"):
            config.fx.max_cache_age_days = int(v)
        if v := os.getenv("COMPLIANCE_FX_TIMEOUT_SECONDS"):
            config.fx.fetch_timeout_seconds = float(v)

        # Notification overrides
        if v := os.getenv("COMPLIANCE_ALERT_EMAILS"):
            config.notifications.compliance_recipients = _split_list(v)
        if v := os.getenv("COMPLIANCE_MANAGEMENT_EMAILS"):
            config.notifications.management_recipients = _split_list(v)
        if v := os.getenv("COMPLIANCE_NOTIFICATION_TIMEOUT_SECONDS"):
            config.notifications.send_timeout_seconds = float(v)
        if v := os.getenv("COMPLIANCE_ADMIN_BASE_URL"):
            config.notifications.admin_base_url = v.rstrip("/")

        if v := os.getenv("COMPLIANCE_TTR_THRESHOLD"):
            config.thresholds.ttr_threshold_aud = float(v)

        return config


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# Module-level default instance
default_config = ComplianceConfig()
