"""
Core API views.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from django.db import DatabaseError, connection
from drf_spectacular.utils import extend_schema
import logging

logger = logging.getLogger(__name__)


class HealthCheckView(APIView):
    """
    Health check endpoint.

    GET /v1/health/

    Returns 200 if the database answers, 503 otherwise.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        summary="Health check",
        description="Check the health of the system and its database",
        responses={
            200: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                }
            },
            503: {
                'type': 'object',
                'properties': {
                    'status': {'type': 'string'},
                    'database': {'type': 'string'},
                    'errors': {'type': 'array', 'items': {'type': 'string'}},
                }
            }
        }
    )
    def get(self, request):
        health_status = {
            'status': 'healthy',
            'database': 'unknown',
        }

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
            health_status['database'] = 'healthy'
        except DatabaseError as e:
            logger.error("Database health check failed", exc_info=True)
            health_status['status'] = 'unhealthy'
            health_status['database'] = 'unhealthy'
            health_status['errors'] = [f"Database: {e}"]
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status, status=status.HTTP_200_OK)
