"""Amount normalization into the reporting currency.

Reports must state amounts in AUD. The live rate comes from the metals price
feed; every successful fetch is written to the rate cache so that a feed
outage can fall back to a recent rate. A cached rate older than the configured
bound (7 days) is never used, and no default rate is ever substituted:
exhausting both paths raises ``NoRateAvailableError``.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Protocol

import httpx
import structlog

from .config import FxConfig
from .errors import NoRateAvailableError, PersistenceError, PriceFeedError
from .models import CachedRate, ConversionResult, FxQuote, RateSource
from .store import ComplianceStore

logger = structlog.get_logger()

METALPRICE_API_BASE_URL = "https://api.metalpriceapi.com/v1"


class PriceFeed(Protocol):
    async def fetch_rate(self, from_currency: str, to_currency: str) -> FxQuote: ...


class MetalpriceApiFeed:
    """FX rates from MetalpriceAPI's ``/latest`` endpoint.

    Response shape: ``{"success": true, "base": "USD", "timestamp": 1700000000,
    "rates": {"AUD": 1.52, ...}}``. With ``base=<from>`` the rate for ``<to>``
    is the number of ``<to>`` units per one ``<from>``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = METALPRICE_API_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def fetch_rate(self, from_currency: str, to_currency: str) -> FxQuote:
        if not self.api_key:
            raise PriceFeedError("MetalpriceAPI key is not configured")

        params = {
            "api_key": self.api_key,
            "base": from_currency,
            "currencies": to_currency,
        }
        url = f"{self.base_url}/latest"

        if self._client is not None:
            response = await self._client.get(url, params=params)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, params=params)

        if response.status_code != 200:
            raise PriceFeedError(
                f"MetalpriceAPI returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise PriceFeedError("MetalpriceAPI returned invalid JSON") from exc

        if not payload.get("success"):
            error = payload.get("error") or {}
            raise PriceFeedError(
                f"MetalpriceAPI request failed: {error.get('info', 'unknown error')}"
            )

        rate = (payload.get("rates") or {}).get(to_currency)
        if not isinstance(rate, int | float) or rate <= 0:
            raise PriceFeedError(f"MetalpriceAPI returned no usable {to_currency} rate")

        timestamp = payload.get("timestamp")
        as_of = (
            datetime.fromtimestamp(timestamp, tz=UTC)
            if isinstance(timestamp, int | float)
            else datetime.now(UTC)
        )
        return FxQuote(rate=float(rate), as_of=as_of)


class AmountNormalizer:
    def __init__(
        self,
        feed: PriceFeed,
        store: ComplianceStore,
        config: FxConfig | None = None,
    ) -> None:
        self.feed = feed
        self.store = store
        self.config = config or FxConfig()

    async def convert(
        self,
        amount: float,
        from_currency: str,
        to_currency: str | None = None,
        now: datetime | None = None,
    ) -> ConversionResult:
        """Convert ``amount`` into ``to_currency`` (default: reporting currency).

        Raises:
            NoRateAvailableError: live fetch failed and no cached rate is
                within the staleness bound.
        """
        from_currency = from_currency.upper()
        to_currency = (to_currency or self.config.reporting_currency).upper()
        now = now or datetime.now(UTC)

        if from_currency == to_currency:
            return ConversionResult(
                from_currency=from_currency,
                to_currency=to_currency,
                amount=amount,
                rate=1.0,
                normalized_amount=amount,
                as_of=now,
                source=RateSource.IDENTITY,
            )

        try:
            quote = await asyncio.wait_for(
                self.feed.fetch_rate(from_currency, to_currency),
                timeout=self.config.fetch_timeout_seconds,
            )
        except (PriceFeedError, httpx.HTTPError, TimeoutError) as exc:
            logger.warning(
                "fx_live_rate_failed",
                from_currency=from_currency,
                to_currency=to_currency,
                error=str(exc) or type(exc).__name__,
            )
            return await self._convert_from_cache(amount, from_currency, to_currency, now)

        await self._write_cache(from_currency, to_currency, quote.rate, now)

        logger.info(
            "fx_rate_fetched",
            from_currency=from_currency,
            to_currency=to_currency,
            rate=quote.rate,
        )
        return ConversionResult(
            from_currency=from_currency,
            to_currency=to_currency,
            amount=amount,
            rate=quote.rate,
            normalized_amount=amount * quote.rate,
            as_of=quote.as_of,
            source=RateSource.LIVE,
        )

    async def _write_cache(
        self, from_currency: str, to_currency: str, rate: float, fetched_at: datetime
    ) -> None:
        try:
            await self.store.upsert_rate(
                CachedRate(
                    from_currency=from_currency,
                    to_currency=to_currency,
                    rate=rate,
                    fetched_at=fetched_at,
                )
            )
        except PersistenceError:
            logger.exception(
                "fx_rate_cache_write_failed",
                from_currency=from_currency,
                to_currency=to_currency,
            )

    async def _convert_from_cache(
        self, amount: float, from_currency: str, to_currency: str, now: datetime
    ) -> ConversionResult:
        cached = await self.store.latest_rate(from_currency, to_currency)
        max_age = timedelta(days=self.config.max_cache_age_days)

        if cached is None or now - cached.fetched_at > max_age:
            logger.error(
                "fx_rate_unavailable",
                from_currency=from_currency,
                to_currency=to_currency,
                cached_at=cached.fetched_at.isoformat() if cached else None,
            )
            raise NoRateAvailableError(from_currency, to_currency)

        staleness_hours = (now - cached.fetched_at).total_seconds() / 3600
        logger.warning(
            "fx_rate_cache_fallback",
            from_currency=from_currency,
            to_currency=to_currency,
            rate=cached.rate,
            staleness_hours=round(staleness_hours, 1),
        )
        return ConversionResult(
            from_currency=from_currency,
            to_currency=to_currency,
            amount=amount,
            rate=cached.rate,
            normalized_amount=amount * cached.rate,
            as_of=cached.fetched_at,
            source=RateSource.CACHE,
            staleness_hours=staleness_hours,
        )
