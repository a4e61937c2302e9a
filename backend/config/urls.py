"""
URL configuration for the TeamUp chat project.
"""

import logging

from django.contrib import admin
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.urls import include, path

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint
    """
    try:
        # Check database connection
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")

        return JsonResponse({
            'status': 'ok',
            'services': {
                'database': 'connected',
            }
        })
    except DatabaseError as e:
        logger.error(f'Health check failed: {e}')
        return JsonResponse({
            'status': 'error',
            'error': 'Service unavailable',
        }, status=503)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Health check
    path('health', health_check, name='health_check'),

    # API routes
    path('api/auth/', include('apps.authentication.urls')),
    path('api/messages/', include('apps.messaging.urls')),
    path('api/conversations/', include('apps.conversations.urls')),
]
