import threading
import time
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError, connection

from countries import rendering, services
from countries.models import Country
from countries.services import (
    ExternalServiceError,
    compute_estimated_gdp,
    refresh_country_data,
)

pytestmark = pytest.mark.django_db


def test_refresh_endpoint_example(api_client, upstream):
    response = api_client.post("/countries/refresh")

    assert response.status_code == 200
    assert response.json() == {"message": "Countries refreshed successfully", "countries_processed": 2}
    assert Country.objects.count() == 2

    nigeria = Country.objects.get(name="Nigeria")
    assert nigeria.currency_code == "NGN"
    assert nigeria.exchange_rate == 1600.23
    assert nigeria.estimated_gdp is not None

    bouvet = Country.objects.get(name="Bouvet Island")
    assert bouvet.currency_code == "NOK"
    assert bouvet.exchange_rate is None
    assert bouvet.estimated_gdp is None


def test_refresh_fetches_both_providers(upstream):
    refresh_country_data()
    assert sorted(upstream.requests) == ["open.er-api.com", "restcountries.com"]


def test_estimated_gdp_within_multiplier_bounds(upstream):
    refresh_country_data()

    nigeria = Country.objects.get(name="Nigeria")
    low = nigeria.population * 1000 / nigeria.exchange_rate
    high = nigeria.population * 2000 / nigeria.exchange_rate
    assert low <= nigeria.estimated_gdp <= high


def test_compute_estimated_gdp_with_fixed_multiplier():
    assert compute_estimated_gdp(1000, 2.0, multiplier=1500) == 750000


def test_refresh_is_idempotent(upstream):
    refresh_country_data()
    first_ids = dict(Country.objects.values_list("name", "id"))
    first_refreshed = Country.objects.get(name="Nigeria").last_refreshed_at

    result = refresh_country_data()

    assert result["countries_processed"] == 2
    assert Country.objects.count() == 2
    assert dict(Country.objects.values_list("name", "id")) == first_ids
    assert Country.objects.get(name="Nigeria").last_refreshed_at >= first_refreshed


def test_refresh_replaces_every_field(upstream, make_country):
    make_country(
        "Nigeria", capital="Lagos", region="Old", population=1,
        currency_code="XXX", exchange_rate=3.0, estimated_gdp=1.0,
    )
    upstream.countries[0]["currencies"] = []

    refresh_country_data()

    nigeria = Country.objects.get(name="Nigeria")
    assert nigeria.capital == "Abuja"
    assert nigeria.region == "Africa"
    assert nigeria.population == 206139589
    assert nigeria.currency_code is None
    assert nigeria.exchange_rate is None
    assert nigeria.estimated_gdp is None


def test_gdp_present_only_with_exchange_rate(upstream):
    upstream.countries.append({
        "name": "Ghana", "capital": "Accra", "region": "Africa",
        "population": 31072940, "currencies": [{"code": "GHS"}],
    })
    upstream.countries.append({"name": "Nowhere", "population": 5})
    refresh_country_data()

    for country in Country.objects.all():
        assert (country.exchange_rate is None) == (country.estimated_gdp is None)
    assert Country.objects.get(name="Nowhere").currency_code is None


def test_unusable_rate_leaves_both_fields_empty(upstream):
    upstream.rates["rates"]["NGN"] = 0
    refresh_country_data()

    nigeria = Country.objects.get(name="Nigeria")
    assert nigeria.exchange_rate is None
    assert nigeria.estimated_gdp is None


def test_names_match_case_sensitively(upstream, make_country):
    make_country("nigeria")
    refresh_country_data()
    assert Country.objects.filter(name__iexact="nigeria").count() == 2


def test_repeated_name_in_directory_creates_one_record(upstream):
    upstream.countries.append(dict(upstream.countries[0], capital="Lagos"))

    result = refresh_country_data()

    assert result["countries_processed"] == 3
    assert Country.objects.filter(name="Nigeria").count() == 1
    assert Country.objects.get(name="Nigeria").capital == "Lagos"


def test_entries_without_name_are_skipped(upstream):
    upstream.countries.append({"capital": "Nameless", "population": 10})
    result = refresh_country_data()
    assert result["countries_processed"] == 2
    assert Country.objects.count() == 2


def test_countries_provider_error_returns_503(api_client, upstream):
    upstream.status["restcountries.com"] = 500

    response = api_client.post("/countries/refresh")

    assert response.status_code == 503
    assert response.json() == {
        "error": "External data source unavailable",
        "details": "Could not fetch data from restcountries.com",
    }
    assert Country.objects.count() == 0


def test_rates_provider_unreachable_returns_503(api_client, upstream):
    upstream.unreachable.add("open.er-api.com")

    response = api_client.post("/countries/refresh")

    assert response.status_code == 503
    assert response.json()["details"] == "Could not fetch data from open.er-api.com"
    assert Country.objects.count() == 0


def test_malformed_rates_payload_counts_as_unavailable(upstream):
    upstream.rates = {"result": "error"}
    with pytest.raises(ExternalServiceError) as excinfo:
        refresh_country_data()
    assert excinfo.value.service_name == "open.er-api.com"


def test_database_failure_returns_generic_500(api_client, upstream, monkeypatch):
    def broken_bulk_create(*args, **kwargs):
        raise DatabaseError("disk I/O error")

    monkeypatch.setattr(Country.objects, "bulk_create", broken_bulk_create)

    response = api_client.post("/countries/refresh")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert Country.objects.count() == 0


def test_refresh_writes_summary_image(upstream, summary_cache_dir):
    refresh_country_data()
    assert (summary_cache_dir / "summary.png").read_bytes().startswith(b"\x89PNG")


def test_render_failure_does_not_fail_refresh(api_client, upstream, monkeypatch, summary_cache_dir):
    class BrokenRenderer:
        def render(self, summary):
            raise rendering.RenderError("browser crashed")

    monkeypatch.setattr(rendering, "get_renderer", BrokenRenderer)

    response = api_client.post("/countries/refresh")

    assert response.status_code == 200
    assert Country.objects.count() == 2
    assert not (summary_cache_dir / "summary.png").exists()
    assert (summary_cache_dir / "summary.txt").read_text() == rendering.FALLBACK_NOTICE_TEXT


def test_refresh_command(upstream):
    out = StringIO()
    call_command("refresh_countries", stdout=out)
    assert "2 countries processed" in out.getvalue()
    assert Country.objects.count() == 2


def test_refresh_command_reports_unavailable_upstream(upstream):
    upstream.unreachable.add("restcountries.com")
    with pytest.raises(CommandError, match="restcountries.com"):
        call_command("refresh_countries", stdout=StringIO())


@pytest.mark.django_db(transaction=True)
def test_concurrent_refreshes_run_one_after_another(upstream, monkeypatch):
    events = []
    first_started = threading.Event()
    release = threading.Event()
    serve = upstream.handler

    def gated_handler(request):
        events.append(("request", threading.current_thread().name))
        if not first_started.is_set():
            first_started.set()
            release.wait(timeout=5)
        return serve(request)

    upstream.handler = gated_handler

    run_pipeline = services._refresh_country_data

    def recording_pipeline():
        try:
            return run_pipeline()
        finally:
            events.append(("finished", threading.current_thread().name))

    monkeypatch.setattr(services, "_refresh_country_data", recording_pipeline)

    errors = []

    def run():
        try:
            refresh_country_data()
        except Exception as exc:
            errors.append(exc)
        finally:
            connection.close()

    first = threading.Thread(target=run, name="first")
    second = threading.Thread(target=run, name="second")
    first.start()
    assert first_started.wait(timeout=5)
    second.start()
    time.sleep(0.2)

    assert ("request", "second") not in events
    release.set()
    first.join(timeout=10)
    second.join(timeout=10)

    assert not first.is_alive() and not second.is_alive()
    assert errors == []
    first_done = events.index(("finished", "first"))
    second_requests = [i for i, event in enumerate(events) if event == ("request", "second")]
    assert second_requests
    assert min(second_requests) > first_done
    assert Country.objects.count() == 2
