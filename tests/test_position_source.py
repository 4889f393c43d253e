"""
tests/test_position_source.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Position acquisition: mode policies, the bounded wait, permission state and
the Google Geolocation API platform.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import FakePlatform
from whereabouts import position_source as ps
from whereabouts.errors import (
    PositionPermissionDenied,
    PositionTimeout,
    PositionUnavailable,
)
from whereabouts.models import Coordinates
from whereabouts.position_source import (
    AcquisitionPolicy,
    GeolocationApiPlatform,
    PositionMode,
    PositionSource,
    StaticPlatform,
)


class _HangingPlatform:
    async def request_fix(self, accuracy_hint, timeout, max_cache_age):
        await asyncio.sleep(60)


class _BrokenPlatform:
    async def request_fix(self, accuracy_hint, timeout, max_cache_age):
        raise RuntimeError("driver exploded")


# ── Policies ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mode, expected",
    [
        (PositionMode.QUICK, ("low", 5.0, 60.0)),
        (PositionMode.PRECISE, ("high", 15.0, 300.0)),
        (PositionMode.SCHEDULED, ("high", 15.0, 300.0)),
        ("quick", ("low", 5.0, 60.0)),
    ],
)
async def test_mode_policy_passed_to_platform(mode, expected):
    platform = FakePlatform()

    coords = await PositionSource(platform).acquire(mode)

    assert platform.calls == [expected]
    assert coords == Coordinates(52.5163, 13.3777)


@pytest.mark.asyncio
async def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        await PositionSource(FakePlatform()).acquire("sloppy")


# ── Errors & permission ─────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_hanging_platform_times_out(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setitem(
        ps.MODE_POLICIES, PositionMode.QUICK, AcquisitionPolicy("low", 0.01, 60.0)
    )
    monkeypatch.setattr(ps, "TIMEOUT_GRACE_S", 0.01)

    with pytest.raises(PositionTimeout):
        await PositionSource(_HangingPlatform()).acquire(PositionMode.QUICK)


@pytest.mark.asyncio
async def test_permission_tracks_outcomes():
    platform = FakePlatform()
    source = PositionSource(platform)
    assert source.permission == "pending"

    await source.acquire()
    assert source.permission == "granted"

    platform.error = PositionPermissionDenied("denied")
    with pytest.raises(PositionPermissionDenied):
        await source.acquire()
    assert source.permission == "denied"


@pytest.mark.asyncio
async def test_unavailable_keeps_permission():
    source = PositionSource(FakePlatform(error=PositionUnavailable("no signal")))

    with pytest.raises(PositionUnavailable):
        await source.acquire()

    assert source.permission == "pending"


@pytest.mark.asyncio
async def test_unexpected_platform_error_reported_unavailable():
    with pytest.raises(PositionUnavailable, match="driver exploded"):
        await PositionSource(_BrokenPlatform()).acquire()


# ── Static platform ─────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_static_platform():
    coords = await PositionSource(StaticPlatform(48.8566, 2.3522)).acquire()

    assert coords == Coordinates(48.8566, 2.3522)


@pytest.mark.parametrize("lat, lon", [(91.0, 0.0), (0.0, -181.0)])
def test_static_platform_rejects_bad_coordinates(lat, lon):
    with pytest.raises(ValueError):
        StaticPlatform(lat, lon)


# ── Google Geolocation API ──────────────────────────────────────────────
class TestGeolocationApiPlatform:
    @pytest.mark.asyncio
    async def test_fix_from_api(self, httpx_mock):
        httpx_mock.add_response(
            json={"location": {"lat": 51.5074, "lng": -0.1278}, "accuracy": 42.0}
        )

        fix = await GeolocationApiPlatform("k").request_fix("high", 15, 300)

        assert (fix.latitude, fix.longitude, fix.accuracy_m) == (51.5074, -0.1278, 42.0)
        request = httpx_mock.get_request()
        assert request.method == "POST"
        assert request.url.params["key"] == "k"

    @pytest.mark.asyncio
    async def test_recent_fix_reused(self, httpx_mock):
        httpx_mock.add_response(json={"location": {"lat": 1.0, "lng": 2.0}})
        platform = GeolocationApiPlatform("k")

        first = await platform.request_fix("high", 15, 300)
        second = await platform.request_fix("high", 15, 300)

        assert second is first
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_forbidden_denies_and_fails_fast(self, httpx_mock):
        httpx_mock.add_response(status_code=403, json={"error": {"code": 403}})
        source = PositionSource(GeolocationApiPlatform("k"))

        with pytest.raises(PositionPermissionDenied):
            await source.acquire()
        with pytest.raises(PositionPermissionDenied):
            await source.acquire()

        assert source.permission == "denied"
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_not_found_is_unavailable(self, httpx_mock):
        httpx_mock.add_response(status_code=404, json={"error": {"code": 404}})

        with pytest.raises(PositionUnavailable, match="HTTP 404"):
            await GeolocationApiPlatform("k").request_fix("high", 15, 300)

    @pytest.mark.asyncio
    async def test_transport_timeout(self, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))

        with pytest.raises(PositionTimeout):
            await GeolocationApiPlatform("k").request_fix("high", 15, 300)

    @pytest.mark.asyncio
    async def test_malformed_body(self, httpx_mock):
        httpx_mock.add_response(json={"accuracy": 10})

        with pytest.raises(PositionUnavailable, match="Malformed"):
            await GeolocationApiPlatform("k").request_fix("high", 15, 300)

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(PositionUnavailable, match="not configured"):
            await GeolocationApiPlatform("").request_fix("high", 15, 300)
