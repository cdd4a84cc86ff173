# countries/urls.py
from django.urls import path
from .views import (
    refresh_countries_view,
    CountryListView,
    CountryDetailView,
    status_view,
    summary_image_view,
)

urlpatterns = [
    path('status', status_view, name='status'),
    path('countries', CountryListView.as_view(), name='country-list'),
    path('countries/refresh', refresh_countries_view, name='country-refresh'),

    # `<str:name>` matches any single segment, so the fixed `refresh` and
    # `image` routes must be listed before it. A country literally named
    # "image" is therefore reachable only through the list endpoint.
    path('countries/image', summary_image_view, name='country-summary-image'),
    path('countries/<str:name>', CountryDetailView.as_view(), name='country-detail'),
]
