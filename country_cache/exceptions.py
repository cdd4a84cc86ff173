# country_cache/exceptions.py
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from countries.services import CountryNotFound, ExternalServiceError

logger = logging.getLogger('country_cache')


def custom_exception_handler(exc, context):
    """
    Custom exception handler for Django REST Framework.
    Every error response has the shape {"error": ..., "details"?: ...};
    unclassified failures become a bare 500 that leaks nothing internal.
    """
    if isinstance(exc, CountryNotFound):
        return Response({'error': 'Country not found'}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, ExternalServiceError):
        return Response(
            {'error': 'External data source unavailable', 'details': str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    # Call REST framework's default exception handler first,
    # to get the standard error response.
    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(f"Unhandled error in {type(view).__name__ if view else 'unknown view'}: {exc}", exc_info=exc)
        return Response({'error': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if response.status_code == 404:
        response.data = {'error': 'Country not found'}
    elif response.status_code == 400:
        response.data = {'error': 'Validation failed', 'details': response.data}
    elif response.status_code >= 500:
        response.data = {'error': 'Internal server error'}
    elif isinstance(response.data, dict) and 'detail' in response.data:
        response.data = {'error': response.data['detail']}

    return response
