import os
import random
from datetime import datetime, timezone

from django.conf import settings


MULTIPLIER_RANGE = (1000, 2000)


class Config:
    """Cache-directory resolution driven by the ENVIRONMENT and CACHE_DIR settings."""

    @property
    def environment(self) -> str:
        return getattr(settings, "ENVIRONMENT", "development")

    @property
    def cache_path(self) -> str:
        """Return absolute cache directory path (writable)."""
        if self.environment == "production":
            return "/tmp/cache"
        return os.path.abspath(getattr(settings, "CACHE_DIR", "cache"))


config = Config()


def make_multiplier():
    low, high = MULTIPLIER_RANGE
    return random.randint(low, high)


def estimate_gdp(population, exchange_rate):
    """
    Synthetic GDP placeholder: population * random(1000..2000) / exchange_rate.

    Deliberately non-reproducible; callers must only invoke it once the
    population and rate are known to be positive.
    """
    return (population * make_multiplier()) / exchange_rate


def get_summary_image_path():
    """Return full path to the summary image in the writable cache."""
    return os.path.join(config.cache_path, "summary.png")


def get_now():
    """Return current UTC datetime (aware)."""
    return datetime.now(timezone.utc)
