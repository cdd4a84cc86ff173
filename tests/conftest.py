import httpx
import pytest
from rest_framework.test import APIClient

from countries import services
from countries.models import Country


COUNTRIES_PAYLOAD = [
    {
        "name": "Nigeria",
        "capital": "Abuja",
        "region": "Africa",
        "population": 206139589,
        "flag": "https://flagcdn.com/ng.svg",
        "currencies": [{"code": "NGN", "name": "Nigerian naira", "symbol": "₦"}],
    },
    {
        "name": "Bouvet Island",
        "region": "Antarctic Ocean",
        "population": 0,
        "flag": "https://flagcdn.com/bv.svg",
        "currencies": [{"code": "NOK", "name": "Norwegian krone", "symbol": "kr"}],
    },
]

RATES_PAYLOAD = {
    "result": "success",
    "base_code": "USD",
    "rates": {"USD": 1, "NGN": 1600.23, "GHS": 15.34, "EUR": 0.92},
}


class FakeUpstream:
    """Serves the two upstream APIs through httpx.MockTransport."""

    def __init__(self):
        self.countries = [dict(c) for c in COUNTRIES_PAYLOAD]
        self.rates = dict(RATES_PAYLOAD, rates=dict(RATES_PAYLOAD["rates"]))
        self.status = {"restcountries.com": 200, "open.er-api.com": 200}
        self.unreachable = set()
        self.requests = []

    def handler(self, request):
        host = request.url.host
        self.requests.append(host)
        if host in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        body = self.countries if host == "restcountries.com" else self.rates
        return httpx.Response(self.status[host], json=body)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def summary_cache_dir(settings, tmp_path):
    cache = tmp_path / "cache"
    settings.SUMMARY_CACHE_DIR = str(cache)
    settings.SUMMARY_RENDERER = "countries.rendering.PillowRenderer"
    settings.SUMMARY_FONT_PATH = None
    return cache


@pytest.fixture
def upstream(monkeypatch, settings):
    settings.COUNTRIES_API_URL = "https://restcountries.com/v2/all?fields=name,capital,region,population,flag,currencies"
    settings.EXCHANGE_RATE_API_URL = "https://open.er-api.com/v6/latest/USD"
    fake = FakeUpstream()
    monkeypatch.setattr(services, "_http_client", fake.client)
    return fake


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def make_country():
    def _make(name, **fields):
        fields.setdefault("population", 1000)
        return Country.objects.create(name=name, **fields)
    return _make
