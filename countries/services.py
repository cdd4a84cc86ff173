# countries/services.py
import asyncio
import httpx
import logging
import math
import random
import threading
from django.conf import settings
from django.db import transaction, DatabaseError
from django.db.models import Count, Max
from django.utils import timezone
from django_filters.utils import translate_validation

from .filters import CountryFilter
from .models import Country
from .rendering import generate_summary_image


# ==============================================================================
# CONFIGURATION AND SETUP
# ==============================================================================

# The logger's behavior is configured in settings.LOGGING.
logger = logging.getLogger('countries')

# Bounds of the random factor used for estimated GDP.
GDP_MULTIPLIER_RANGE = (1000, 2000)

# Fields written on every upsert. `name` is the lookup key and never changes.
UPSERT_FIELDS = [
    'capital', 'region', 'population', 'currency_code', 'exchange_rate',
    'estimated_gdp', 'flag_url', 'last_refreshed_at',
]

# Serializes refresh runs within this process.
_refresh_lock = threading.Lock()


class ExternalServiceError(Exception):
    """One of the upstream data providers could not be reached or answered badly."""

    def __init__(self, service_name, status_code=None):
        self.service_name = service_name
        self.status_code = status_code
        super().__init__(f"Could not fetch data from {service_name}")


class CountryNotFound(Exception):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Country '{name}' not found")


class RefreshError(Exception):
    pass


# ==============================================================================
# UPSTREAM FETCHING
# ==============================================================================

def _http_client():
    return httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT)


def _read_json(result, url, expected_type):
    """
    Turn one gathered result into parsed JSON, or raise ExternalServiceError
    naming the host the failing request was sent to.
    """
    service_name = httpx.URL(url).host
    if isinstance(result, httpx.HTTPError):
        logger.error(f"Request to {service_name} failed: {result!r}")
        raise ExternalServiceError(service_name) from result
    if isinstance(result, BaseException):
        raise result

    try:
        result.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.error(f"{service_name} returned non-2xx status: {e.response.status_code}")
        raise ExternalServiceError(service_name, e.response.status_code) from e
    logger.debug(f"{service_name} responded with status {result.status_code}")

    try:
        data = result.json()
    except ValueError as e:
        logger.error(f"{service_name} returned a body that is not JSON")
        raise ExternalServiceError(service_name, result.status_code) from e
    if not isinstance(data, expected_type):
        logger.error(f"{service_name} returned an unexpected payload shape: {type(data).__name__}")
        raise ExternalServiceError(service_name, result.status_code)
    return data


async def _fetch_api_data():
    """Fetches the country directory and the USD rate table concurrently."""
    countries_url = settings.COUNTRIES_API_URL
    rates_url = settings.EXCHANGE_RATE_API_URL
    logger.info("Starting concurrent fetch from external APIs...")

    async with _http_client() as client:
        countries_result, rates_result = await asyncio.gather(
            client.get(countries_url), client.get(rates_url), return_exceptions=True
        )

    countries_data = _read_json(countries_result, countries_url, list)
    rates_payload = _read_json(rates_result, rates_url, dict)
    rates = rates_payload.get('rates')
    if not isinstance(rates, dict):
        logger.error("Exchange rate payload has no 'rates' mapping")
        raise ExternalServiceError(httpx.URL(rates_url).host, rates_result.status_code)

    logger.info("Successfully fetched data from both APIs.")
    return countries_data, rates


# ==============================================================================
# DERIVED METRICS
# ==============================================================================

def compute_estimated_gdp(population, exchange_rate, multiplier=None):
    """
    population * multiplier / exchange_rate, with multiplier drawn uniformly
    from GDP_MULTIPLIER_RANGE on every call unless one is given.
    """
    if multiplier is None:
        multiplier = random.uniform(*GDP_MULTIPLIER_RANGE)
    return (population * multiplier) / exchange_rate


def _usable_rate(value, currency_code):
    """Returns the rate as a positive float, or None if it can't be used."""
    if value is None:
        return None
    try:
        rate = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Could not parse exchange rate for {currency_code}. Value: {value!r}")
        return None
    if not math.isfinite(rate) or rate <= 0:
        logger.warning(f"Ignoring non-positive exchange rate for {currency_code}: {rate}")
        return None
    return rate


def _country_fields(country_data, exchange_rates):
    population = int(country_data.get('population') or 0)

    currency_code = None
    currencies = country_data.get('currencies') or []
    if currencies and isinstance(currencies[0], dict):
        currency_code = currencies[0].get('code') or None

    exchange_rate = None
    estimated_gdp = None
    if currency_code:
        exchange_rate = _usable_rate(exchange_rates.get(currency_code), currency_code)
    if exchange_rate is not None:
        estimated_gdp = compute_estimated_gdp(population, exchange_rate)

    return {
        'capital': country_data.get('capital'),
        'region': country_data.get('region'),
        'population': population,
        'currency_code': currency_code,
        'exchange_rate': exchange_rate,
        'estimated_gdp': estimated_gdp,
        'flag_url': country_data.get('flag'),
    }


# ==============================================================================
# MAIN DATA REFRESH LOGIC
# ==============================================================================

def refresh_country_data():
    """
    Refreshes every country from the upstream providers.

    Both providers must answer before anything is written. Each directory
    entry is upserted by exact name with all fields replaced, inside a single
    transaction, and the summary image is regenerated afterwards. Image
    problems never fail the refresh.
    """
    with _refresh_lock:
        return _refresh_country_data()


def _refresh_country_data():
    logger.info("Country data refresh process initiated.")

    countries_data, exchange_rates = asyncio.run(_fetch_api_data())
    logger.info(f"Processing {len(countries_data)} countries and {len(exchange_rates)} exchange rates.")

    try:
        existing_countries = {c.name: c for c in Country.objects.all()}
    except DatabaseError as e:
        logger.error(f"Database error while fetching existing countries: {e}", exc_info=True)
        raise RefreshError("Could not read existing countries from the database.") from e
    logger.debug(f"Loaded {len(existing_countries)} existing countries from the database.")

    refreshed_at = timezone.now()
    countries_to_create = {}
    countries_to_update = {}
    processed = 0

    for country_data in countries_data:
        name = country_data.get('name') if isinstance(country_data, dict) else None
        if not name:
            logger.warning(f"Skipping country with missing name: {country_data}")
            continue

        fields = _country_fields(country_data, exchange_rates)
        fields['last_refreshed_at'] = refreshed_at

        # A name seen twice in one directory updates the pending row.
        instance = existing_countries.get(name) or countries_to_create.get(name)
        if instance is None:
            countries_to_create[name] = Country(name=name, **fields)
        else:
            for field, value in fields.items():
                setattr(instance, field, value)
            if instance.pk is not None:
                countries_to_update[name] = instance
        processed += 1

    logger.info(f"Prepared {len(countries_to_create)} new countries for creation.")
    logger.info(f"Prepared {len(countries_to_update)} existing countries for update.")

    try:
        with transaction.atomic():
            if countries_to_create:
                Country.objects.bulk_create(list(countries_to_create.values()), batch_size=500)
            if countries_to_update:
                Country.objects.bulk_update(list(countries_to_update.values()), UPSERT_FIELDS, batch_size=500)
    except DatabaseError as e:
        logger.error(f"Database error during bulk operations: {e}", exc_info=True)
        raise RefreshError("Failed to save data to the database.") from e

    generate_summary_image()

    logger.info(f"Country data refresh completed: {processed} countries processed.")
    return {"message": "Countries refreshed successfully", "countries_processed": processed}


# ==============================================================================
# READ AND DELETE
# ==============================================================================

def list_countries(params):
    """Countries matching the query params, in the requested (or id) order."""
    filterset = CountryFilter(params, queryset=Country.objects.order_by('id'))
    if not filterset.is_valid():
        raise translate_validation(filterset.errors)
    return filterset.qs


def get_country(name):
    try:
        return Country.objects.get(name=name)
    except Country.DoesNotExist:
        raise CountryNotFound(name)


def delete_country(name):
    country = get_country(name)
    country.delete()
    logger.info(f"Deleted country: {name}")
    return {"message": "Country deleted successfully"}


def get_status():
    """
    Total number of stored countries and the latest refresh timestamp.
    An empty table reports the current time.
    """
    stats = Country.objects.aggregate(total=Count('id'), last_refreshed_at=Max('last_refreshed_at'))
    return {
        "total_countries": stats['total'],
        "last_refreshed_at": stats['last_refreshed_at'] or timezone.now(),
    }
