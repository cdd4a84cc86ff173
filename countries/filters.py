# countries/filters.py
from django.db.models import F
from django_filters import rest_framework as filters

from .models import Country


# Allowed values of `?sort=`, mapped to the ORM ordering they produce.
# Countries without an estimated GDP always sort after those with one.
SORT_ORDERINGS = {
    'gdp_asc': (F('estimated_gdp').asc(nulls_last=True), 'id'),
    'gdp_desc': (F('estimated_gdp').desc(nulls_last=True), 'id'),
    'population_asc': ('population', 'id'),
    'population_desc': ('-population', 'id'),
    'name_asc': ('name',),
    'name_desc': ('-name',),
}


class CountryFilter(filters.FilterSet):
    """
    Filters available on the Country list endpoint.

    `region` and `currency` are exact matches, combined with AND when both
    are given. `sort` must be one of SORT_ORDERINGS; anything else makes the
    filterset invalid.
    """
    region = filters.CharFilter(field_name='region', lookup_expr='exact')
    # The URL parameter is `?currency=NGN` but the column is `currency_code`.
    currency = filters.CharFilter(field_name='currency_code', lookup_expr='exact')
    sort = filters.ChoiceFilter(
        choices=[(key, key) for key in SORT_ORDERINGS],
        method='sort_queryset',
    )

    class Meta:
        model = Country
        fields = ['region', 'currency', 'sort']

    def sort_queryset(self, queryset, name, value):
        return queryset.order_by(*SORT_ORDERINGS[value])
