"""
URL configuration for the clipgrab project.

Public endpoints:
    /health/              liveness check
    /stats/               storage and delivery statistics
    /downloads/<name>     fetched artifacts (link delivery fallback)
"""

from django.urls import path

from grabber.views import download_view, health_view, stats_view

urlpatterns = [
    path('health/', health_view, name='health'),
    path('health', health_view),
    path('stats/', stats_view, name='stats'),
    path('downloads/<str:filename>', download_view, name='download'),
]
