"""
Service-to-service authentication for internal webhook endpoints.

Internal callers (other backend services, cron jobs) authenticate with a
shared bearer token:

    Authorization: Bearer <WEBHOOK_SERVICE_TOKEN>

A missing header yields 401 via DRF's NotAuthenticated; a wrong token
yields 401 via AuthenticationFailed.
"""

from __future__ import annotations

import hmac

from django.conf import settings
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import BasePermission


class ServicePrincipal:
    """The authenticated identity of an internal caller."""

    is_authenticated = True
    is_anonymous = False

    def __str__(self) -> str:
        return "internal-service"


class ServiceTokenAuthentication(BaseAuthentication):
    keyword = "Bearer"

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None
        if len(auth) != 2:
            raise AuthenticationFailed("Invalid authorization header.")

        expected = settings.WEBHOOK_SERVICE_TOKEN
        if not expected or not hmac.compare_digest(auth[1], expected.encode()):
            raise AuthenticationFailed("Invalid service token.")
        return ServicePrincipal(), None

    def authenticate_header(self, request) -> str:
        return f'{self.keyword} realm="api"'


class IsInternalService(BasePermission):
    """Allows access only to callers authenticated by ServiceTokenAuthentication."""

    def has_permission(self, request, view) -> bool:
        return isinstance(request.user, ServicePrincipal)
