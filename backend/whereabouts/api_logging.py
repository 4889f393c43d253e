"""
api_logging.py
~~~~~~~~~~~~~~
Tiny wrapper that prints **one concise log line** per outbound HTTP request
made by the positioning platform and the geocoders.

API keys travel in the query string for the Google endpoints, so the URL is
redacted before it is logged.

Usage example
-------------
>>> from .api_logging import logged_request_async
>>> async with httpx.AsyncClient() as cli:
...     resp = await logged_request_async(cli, "get", url, provider="google",
...                                       params={"latlng": "1,2", "key": k})
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import httpx

LOG = logging.getLogger("extapi")

_KEY_RE = re.compile(r"([?&]key=)[^&]+")


def redact(url: str) -> str:
    """Replace the value of any ``key=`` query parameter with ``***``."""
    return _KEY_RE.sub(r"\1***", url)


async def logged_request_async(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *args: Any,
    provider: str = "",
    **kwargs: Any,
) -> httpx.Response:
    """
    Issue one request on *client* **and** emit a concise log line.

    Parameters
    ----------
    client:
        ``httpx.AsyncClient`` instance.
    method:
        HTTP verb – e.g. ``"get"`` or ``"post"``.
    url:
        Absolute URL (query parameters may also be passed via ``params=``).
    provider:
        Short tag prepended to the log line (``"google"``, ``"geolocate"``).

    Returns
    -------
    httpx.Response
        Raw response; status handling is left to the caller because each
        provider maps status codes to its own error kinds.

    Notes
    -----
    Transport errors (timeouts, refused connections) are logged at
    *WARNING* and re-raised unchanged.
    """
    verb = method.upper()
    tag = f"[{provider}] " if provider else ""
    t0 = time.perf_counter()
    try:
        response = await getattr(client, method.lower())(url, *args, **kwargs)
    except Exception as exc:
        latency_ms = (time.perf_counter() - t0) * 1000.0
        LOG.warning("%sFAIL %s %s %.0f ms %r", tag, verb, redact(url), latency_ms, exc)
        raise

    latency_ms = (time.perf_counter() - t0) * 1000.0
    code = response.status_code
    shown = redact(url)

    if code >= 500:
        LOG.warning("%s%s %s → %s (%.0f ms)", tag, verb, shown, code, latency_ms)
    else:
        LOG.info("%s%s %s → %s (%.0f ms)", tag, verb, shown, code, latency_ms)

    return response


__all__ = ["logged_request_async", "redact"]
