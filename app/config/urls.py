"""
Root URL configuration.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin (dead-letter replay, billing ledger)
    /health/                       - Health check endpoint (load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/webhooks/              - Webhook endpoints
        send/                      - Deliver an event to target URLs (service token)
        receive/                   - Verify and store an inbound signed event
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("webhooks/", include("webhooks.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Relay Admin"
admin.site.site_title = "Relay Admin"
admin.site.index_title = "Webhooks and billing"
