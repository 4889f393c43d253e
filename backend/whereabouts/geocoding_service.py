"""geocoding_service.py
~~~~~~~~~~~~~~~~~~~~~
Turn coordinates into a city/country pair.

Strategy
--------
1. **Google Geocoding API** (primary) – structured address components plus
   feature-type tags, which drive the accuracy tier.
2. **OpenStreetMap Nominatim** via geopy (secondary) – plain address
   fields, fixed ``medium`` tier; rate limited to one request per second.
3. Both fail → ``Unknown City`` / ``Unknown Country`` with tier ``low``.

:meth:`GeocodingResolver.resolve` never raises: downstream consumers always
get a usable :class:`CityInfo`, and error semantics stay with the position
and cache stages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Final, Protocol

import httpx
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from .api_logging import logged_request_async
from .constants import GEOCODE_TIMEOUT_S, USER_AGENT
from .errors import GeocodingExhausted
from .models import UNKNOWN_CITY, UNKNOWN_COUNTRY, AccuracyTier, CityInfo, Coordinates

LOG = logging.getLogger("geocoding_service")

GOOGLE_GEOCODE_URL: Final = "https://maps.googleapis.com/maps/api/geocode/json"

HIGH_ACCURACY_TYPES: Final = frozenset({"street_address", "premise"})
LOW_ACCURACY_TYPES: Final = frozenset({"administrative_area_level_2"})

# Nominatim address keys, most specific settlement first.
OSM_CITY_KEYS: Final = ("city", "town", "village", "municipality")


class ReverseGeocoder(Protocol):
    name: str

    async def reverse(self, coords: Coordinates) -> CityInfo:
        """Return a city or raise (any exception counts as a failure)."""


# ── Helpers ──────────────────────────────────────────────────────────────
def classify_accuracy(result_types: list[str] | tuple[str, ...]) -> AccuracyTier:
    """Accuracy tier from a Google result's ``types`` list."""
    types = set(result_types)
    if types & HIGH_ACCURACY_TYPES:
        return AccuracyTier.HIGH
    if types & LOW_ACCURACY_TYPES:
        return AccuracyTier.LOW
    return AccuracyTier.MEDIUM


def extract_google_city(components: list[dict[str, Any]]) -> tuple[str, str]:
    """
    City and country from Google ``address_components``.

    Locality wins; the first-level administrative area is used only when no
    locality is present. Country is looked up independently.
    """
    locality = admin_1 = country = None
    for comp in components:
        types = comp.get("types", [])
        name = comp.get("long_name")
        if not name:
            continue
        if "locality" in types and locality is None:
            locality = name
        elif "administrative_area_level_1" in types and admin_1 is None:
            admin_1 = name
        elif "country" in types and country is None:
            country = name
    return locality or admin_1 or UNKNOWN_CITY, country or UNKNOWN_COUNTRY


def extract_osm_city(address: dict[str, Any]) -> tuple[str, str]:
    """City and country from a Nominatim ``address`` block."""
    city = next((address[k] for k in OSM_CITY_KEYS if address.get(k)), UNKNOWN_CITY)
    return city, address.get("country") or UNKNOWN_COUNTRY


# ── Providers ────────────────────────────────────────────────────────────
class GoogleGeocoder:
    name = "google"

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = GEOCODE_TIMEOUT_S,
        url: str = GOOGLE_GEOCODE_URL,
        language: str = "en",
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.url = url
        self.language = language

    async def reverse(self, coords: Coordinates) -> CityInfo:
        params = {
            "latlng": f"{coords.latitude},{coords.longitude}",
            "key": self.api_key,
            "language": self.language,
        }
        async with httpx.AsyncClient(
            timeout=self.timeout, headers={"User-Agent": USER_AGENT}
        ) as client:
            resp = await logged_request_async(
                client, "get", self.url, provider=self.name, params=params
            )

        if resp.status_code != 200:
            raise GeocodingExhausted(f"Geocoding failed: HTTP {resp.status_code}")

        data = resp.json()
        status = data.get("status", "UNKNOWN_ERROR")
        results = data.get("results") or []
        if status != "OK" or not results:
            raise GeocodingExhausted(f"Geocoding failed: {status}")

        best = results[0]
        city, country = extract_google_city(best.get("address_components", []))
        return CityInfo(
            city=city,
            country=country,
            accuracy=classify_accuracy(best.get("types", [])),
            full_address=best.get("formatted_address"),
        )


class NominatimGeocoder:
    """geopy's Nominatim client, called off the event loop."""

    name = "nominatim"

    def __init__(
        self,
        *,
        timeout: float = GEOCODE_TIMEOUT_S,
        user_agent: str = USER_AGENT,
        min_delay_seconds: float = 1.0,
    ) -> None:
        self.timeout = timeout
        self._nominatim = Nominatim(user_agent=user_agent, timeout=timeout)
        self._reverse_raw = RateLimiter(
            self._nominatim.reverse,
            min_delay_seconds=min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )

    async def reverse(self, coords: Coordinates) -> CityInfo:
        location = await asyncio.wait_for(
            asyncio.to_thread(
                self._reverse_raw,
                f"{coords.latitude}, {coords.longitude}",
                zoom=10,
                addressdetails=True,
                language="en",
            ),
            # RateLimiter may wait up to min_delay before the request starts.
            timeout=self.timeout + 2.0,
        )
        if location is None:
            raise GeocodingExhausted("Nominatim returned no result")

        raw = location.raw or {}
        city, country = extract_osm_city(raw.get("address", {}))
        return CityInfo(
            city=city,
            country=country,
            accuracy=AccuracyTier.MEDIUM,
            full_address=raw.get("display_name") or location.address,
        )


# ── Resolver ─────────────────────────────────────────────────────────────
class GeocodingResolver:
    def __init__(
        self,
        primary: ReverseGeocoder | None,
        secondary: ReverseGeocoder | None,
    ) -> None:
        self.primary = primary
        self.secondary = secondary

    async def resolve(self, coords: Coordinates) -> CityInfo:
        if self.primary is not None:
            try:
                info = await self.primary.reverse(coords)
                LOG.info(
                    "[geocode] %s: %s, %s (%s accuracy)",
                    self.primary.name,
                    info.city,
                    info.country,
                    info.accuracy.value,
                )
                return info
            except Exception as exc:  # noqa: BLE001 – any failure → secondary
                LOG.warning("[geocode] %s failed: %r", self.primary.name, exc)

        if self.secondary is not None:
            try:
                info = await self.secondary.reverse(coords)
                # Secondary results carry no granularity information.
                if info.accuracy is not AccuracyTier.MEDIUM:
                    info = CityInfo(
                        city=info.city,
                        country=info.country,
                        accuracy=AccuracyTier.MEDIUM,
                        full_address=info.full_address,
                    )
                LOG.info(
                    "[geocode] %s fallback: %s, %s",
                    self.secondary.name,
                    info.city,
                    info.country,
                )
                return info
            except Exception as exc:  # noqa: BLE001
                LOG.warning("[geocode] %s fallback failed: %r", self.secondary.name, exc)

        LOG.warning(
            "[geocode] all providers failed for %.4f, %.4f",
            coords.latitude,
            coords.longitude,
        )
        return CityInfo.unknown()


__all__ = [
    "GeocodingResolver",
    "GoogleGeocoder",
    "NominatimGeocoder",
    "ReverseGeocoder",
    "classify_accuracy",
    "extract_google_city",
    "extract_osm_city",
]
