"""
Tests for infrastructure views.
"""

import pytest
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client):
        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected", "cache": "connected"}

    def test_cache_failure_does_not_fail_check(self, client, mocker):
        mocker.patch("django.core.cache.cache.set", side_effect=ConnectionError("redis down"))

        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"
