"""
Raw country directory entry + rate table -> unsaved ``Country``.
"""
import math
from numbers import Number

from . import utils
from .exceptions import RecordProcessingError
from .models import Country


def compute_estimate(population, exchange_rate, estimator=utils.estimate_gdp):
    """estimated_gdp is present iff population > 0 and exchange_rate > 0."""
    if not population or population <= 0:
        return None
    if exchange_rate is None or exchange_rate <= 0:
        return None
    return estimator(population, exchange_rate)


def _text(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _population(value):
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, Number):
        raise RecordProcessingError({"population": "must be a number"})
    if not math.isfinite(value):
        raise RecordProcessingError({"population": "must be a finite number"})
    if value < 0:
        raise RecordProcessingError({"population": "must not be negative"})
    return int(value)


def _currency_code(currencies):
    if not currencies or not isinstance(currencies, list):
        return None
    first_currency = currencies[0] or {}
    if not isinstance(first_currency, dict):
        return None
    code = _text(first_currency.get("code"))
    return code.upper() if code else None


def normalize(raw, rate_table, estimator=utils.estimate_gdp):
    if not isinstance(raw, dict):
        raise RecordProcessingError({"entry": "must be an object"})
    name = _text(raw.get("name"))
    if not name:
        raise RecordProcessingError({"name": "is required"})

    population = _population(raw.get("population"))
    currency_code = _currency_code(raw.get("currencies"))
    # No fallback rate: an unknown currency leaves the rate and the estimate empty.
    exchange_rate = rate_table.rate_for(currency_code)

    return Country(
        name=name,
        capital=_text(raw.get("capital")),
        region=_text(raw.get("region")),
        population=population,
        currency_code=currency_code,
        exchange_rate=exchange_rate,
        estimated_gdp=compute_estimate(population, exchange_rate, estimator),
        flag_url=_text(raw.get("flag")),
    )
