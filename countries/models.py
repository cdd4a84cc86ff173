# countries/models.py
from django.db import models
from django.utils import timezone


class Country(models.Model):
    name = models.CharField(max_length=100, unique=True)
    capital = models.CharField(max_length=100, null=True, blank=True)
    region = models.CharField(max_length=100, null=True, blank=True, db_index=True)
    population = models.BigIntegerField(default=0)
    currency_code = models.CharField(max_length=10, null=True, blank=True, db_index=True)
    # Local currency units per 1 USD; null when the rate table has no usable value.
    exchange_rate = models.FloatField(null=True, blank=True)
    # Derived from population and exchange_rate; null exactly when exchange_rate is.
    estimated_gdp = models.FloatField(null=True, blank=True)
    flag_url = models.URLField(max_length=500, null=True, blank=True)
    # Written by the refresh pipeline only, never by reads or deletes.
    last_refreshed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name_plural = "Countries"

    def __str__(self):
        return self.name
