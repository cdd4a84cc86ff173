# countries/views.py
import logging
from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET
from rest_framework import generics, status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .rendering import SummaryImageNotFound, read_summary_image
from .serializers import CountrySerializer, StatusSerializer
from .services import (
    ExternalServiceError,
    delete_country,
    get_country,
    get_status,
    list_countries,
    refresh_country_data,
)

# Get a logger instance specific to this app
logger = logging.getLogger('countries')

# --- Main Refresh Endpoint ---

@api_view(['POST'])
def refresh_countries_view(request):
    """
    Handles POST /countries/refresh.
    Runs the refresh pipeline and maps its failures to 503 (upstream) or 500.
    """
    logger.info(f"Received request to {request.path} from {request.META.get('REMOTE_ADDR')}")
    try:
        result = refresh_country_data()
        return Response(result, status=status.HTTP_200_OK)

    except ExternalServiceError as e:
        logger.error(f"External service error during refresh: {e.service_name}", exc_info=True)
        return Response(
            {"error": "External data source unavailable", "details": str(e)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )
    except Exception as e:
        logger.critical(f"An unexpected internal server error occurred during refresh: {e}", exc_info=True)
        return Response(
            {"error": "Internal server error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

# --- Country List and Detail Views ---

class CountryListView(generics.ListAPIView):
    """
    Handles GET /countries.
    Supports ?region=, ?currency= (exact matches) and ?sort=.
    """
    serializer_class = CountrySerializer

    def get_queryset(self):
        return list_countries(self.request.query_params)


class CountryDetailView(generics.RetrieveDestroyAPIView):
    """
    Handles GET /countries/:name and DELETE /countries/:name.
    Names are matched exactly.
    """
    serializer_class = CountrySerializer
    lookup_field = 'name'

    def get_object(self):
        return get_country(self.kwargs[self.lookup_field])

    def destroy(self, request, *args, **kwargs):
        result = delete_country(self.kwargs[self.lookup_field])
        return Response(result, status=status.HTTP_200_OK)

# --- Status and Image Endpoints ---

@api_view(['GET'])
def status_view(request):
    """
    Handles GET /status.
    Returns the total number of cached countries and the last refresh timestamp.
    """
    logger.debug(f"Status endpoint requested by {request.META.get('REMOTE_ADDR')}")
    return Response(StatusSerializer(get_status()).data)

@require_GET
def summary_image_view(request):
    """
    Handles GET /countries/image.
    Serves whatever summary image is currently in the cache directory.
    A plain Django view, so DRF content negotiation never rejects `Accept: image/png`.
    """
    logger.debug(f"Image endpoint requested by {request.META.get('REMOTE_ADDR')}")
    try:
        content = read_summary_image()
    except SummaryImageNotFound:
        return JsonResponse({"error": "Summary image not found"}, status=status.HTTP_404_NOT_FOUND)
    response = HttpResponse(content, content_type='image/png')
    response['Content-Length'] = str(len(content))
    return response
