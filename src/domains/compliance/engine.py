"""Compliance engine wiring.

Every component shares one store, one price feed and one notification
sender, constructed once by the host application and passed in.
"""

from .calendar import BusinessCalendar
from .config import ComplianceConfig, default_config
from .deadline_monitor import DeadlineMonitor
from .deadlines import DeadlineCalculator
from .fx import AmountNormalizer, PriceFeed
from .investigation import InvestigationService
from .notifications import NotificationSender
from .smr import SMRGenerator
from .store import ComplianceStore
from .ttr import TTRService


class ComplianceEngine:
    def __init__(
        self,
        store: ComplianceStore,
        feed: PriceFeed,
        sender: NotificationSender,
        config: ComplianceConfig | None = None,
    ) -> None:
        self.config = config or default_config
        self.store = store

        self.calendar = BusinessCalendar(self.config.calendar)
        self.deadlines = DeadlineCalculator(self.calendar, self.config.deadlines)
        self.normalizer = AmountNormalizer(feed, store, self.config.fx)
        self.smr = SMRGenerator(store, self.deadlines, self.normalizer, sender, self.config)
        self.ttr = TTRService(store, self.deadlines, self.normalizer, self.config)
        self.investigations = InvestigationService(
            store, self.deadlines, self.smr, sender, self.config
        )
        self.monitor = DeadlineMonitor(store, self.deadlines, sender, self.config)
