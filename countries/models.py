from django.db import models
from django.db.models.functions import Lower


# Fields a refresh or a direct write may overwrite on an existing row.
MUTABLE_FIELDS = (
    "capital", "region", "population", "currency_code",
    "exchange_rate", "estimated_gdp", "flag_url",
)


class Country(models.Model):
    # id: auto-generated
    # name: unique regardless of case, enforced by the constraint below
    name = models.CharField(max_length=200)
    capital = models.CharField(max_length=200, null=True, blank=True)
    region = models.CharField(max_length=100, null=True, blank=True)
    # population: default to 0 when the directory omits it
    population = models.PositiveBigIntegerField(default=0)
    # currency_code: null when the directory lists no currency
    currency_code = models.CharField(max_length=10, null=True, blank=True)
    # exchange_rate: external-sourced, null means "unknown", never 1
    exchange_rate = models.FloatField(null=True, blank=True)
    # estimated_gdp: computed, null unless population > 0 and exchange_rate > 0
    estimated_gdp = models.FloatField(null=True, blank=True)
    flag_url = models.URLField(max_length=500, null=True, blank=True)
    # last_refreshed_at: updated on every successful write, never moves back
    last_refreshed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["id"]
        verbose_name_plural = "countries"
        constraints = [
            models.UniqueConstraint(Lower("name"), name="country_name_ci_unique"),
        ]

    def __str__(self):
        return self.name
