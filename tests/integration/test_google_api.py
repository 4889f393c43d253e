"""
tests/integration/test_google_api.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Integration tests for the Google Geocoding and Geolocation APIs.

Both need GOOGLE_MAPS_API_KEY and are skipped without it.
"""

from __future__ import annotations

import pytest

from whereabouts.geocoding_service import GoogleGeocoder
from whereabouts.models import AccuracyTier, Coordinates
from whereabouts.position_source import GeolocationApiPlatform


@pytest.mark.asyncio
async def test_reverse_geocode_street_address(google_key: str) -> None:
    info = await GoogleGeocoder(google_key).reverse(Coordinates(40.7484, -73.9857))

    assert info.city == "New York"
    assert info.country == "United States"
    assert info.accuracy in (AccuracyTier.HIGH, AccuracyTier.MEDIUM)
    assert info.full_address


@pytest.mark.asyncio
async def test_geolocation_returns_fix(google_key: str) -> None:
    fix = await GeolocationApiPlatform(google_key).request_fix("high", 15, 300)

    assert -90 <= fix.latitude <= 90
    assert -180 <= fix.longitude <= 180
