"""
External data sources: the country directory and the exchange-rate table.

Both are plain ``requests`` calls; ``fetch_all`` runs them concurrently in
worker threads so the event loop is never blocked.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field

import requests
from asgiref.sync import sync_to_async
from django.conf import settings
from requests.exceptions import RequestException

from .exceptions import ExternalSourceUnavailable


logger = logging.getLogger(__name__)

COUNTRIES_API = 'https://restcountries.com/v2/all?fields=name,capital,region,population,flag,currencies'
EXCHANGE_API = 'https://open.er-api.com/v6/latest/USD'

COUNTRIES_SOURCE = "Countries API"
RATES_SOURCE = "Exchange rates API"


@dataclass(frozen=True)
class RateTable:
    """Rates relative to ``base`` (units of currency per one unit of base)."""

    base: str
    rates: dict = field(default_factory=dict)

    def rate_for(self, currency_code):
        """Return a positive float rate, or None when the rate is unknown."""
        if not currency_code:
            return None
        value = self.rates.get(currency_code)
        if value is None or isinstance(value, bool):
            return None
        try:
            rate = float(value)
        except (TypeError, ValueError):
            return None
        return rate if math.isfinite(rate) and rate > 0 else None


class SourceFetcher:

    def __init__(self, countries_url=COUNTRIES_API, rates_url=EXCHANGE_API, timeout=15, session=None):
        self.countries_url = countries_url
        self.rates_url = rates_url
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls):
        return cls(
            countries_url=getattr(settings, "COUNTRIES_API_URL", COUNTRIES_API),
            rates_url=getattr(settings, "EXCHANGE_API_URL", EXCHANGE_API),
            timeout=getattr(settings, "SOURCE_TIMEOUT", 15),
        )

    def _get_json(self, url, source):
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (RequestException, ValueError) as exc:
            logger.error("%s request failed: %s", source, exc)
            raise ExternalSourceUnavailable(source) from exc

    def fetch_countries(self):
        data = self._get_json(self.countries_url, COUNTRIES_SOURCE)
        if not isinstance(data, list):
            raise ExternalSourceUnavailable(
                COUNTRIES_SOURCE, f"{COUNTRIES_SOURCE} returned an unexpected payload"
            )
        return data

    def fetch_exchange_rates(self):
        data = self._get_json(self.rates_url, RATES_SOURCE)
        # API returns 'rates' mapping next to 'base_code'
        if not isinstance(data, dict) or data.get("result") == "error":
            data = {}
        rates = data.get("rates")
        if not isinstance(rates, dict):
            raise ExternalSourceUnavailable(
                RATES_SOURCE, f"{RATES_SOURCE} returned no exchange rates"
            )
        return RateTable(base=data.get("base_code") or "USD", rates=rates)

    async def fetch_all(self):
        """Fetch the directory and the rate table concurrently."""
        countries, rate_table = await asyncio.gather(
            sync_to_async(self.fetch_countries, thread_sensitive=False)(),
            sync_to_async(self.fetch_exchange_rates, thread_sensitive=False)(),
        )
        logger.info(
            "Fetched %d countries and %d %s-based rates",
            len(countries), len(rate_table.rates), rate_table.base,
        )
        return countries, rate_table
