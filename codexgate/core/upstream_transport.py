"""Registry for per-host HTTPX transports and the upstream client factory."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("codexgate")

_TRANSPORTS: dict[str, httpx.AsyncBaseTransport] = {}


def _normalize_host(host: str) -> str:
    return host.strip().lower()


def register_upstream_transport(host: str, transport: httpx.AsyncBaseTransport) -> None:
    """Register a transport for a host (netloc, e.g. 'codex.local:8000')."""
    if not host:
        raise ValueError("host is required")
    normalized = _normalize_host(host)
    _TRANSPORTS[normalized] = transport
    logger.debug("Registered upstream transport for host '%s'", normalized)


def register_upstream_transport_for_url(
    url: str, transport: httpx.AsyncBaseTransport
) -> None:
    """Register a transport for the netloc extracted from a URL."""
    register_upstream_transport(urlparse(url).netloc, transport)


def clear_upstream_transports() -> None:
    """Clear all registered transports (useful for tests)."""
    _TRANSPORTS.clear()


def get_upstream_transport(url: str) -> Optional[httpx.AsyncBaseTransport]:
    """Return a registered transport for the URL's netloc (if any)."""
    if not url:
        return None
    host = urlparse(url).netloc
    if not host:
        return None
    return _TRANSPORTS.get(_normalize_host(host))


def build_upstream_client(
    url: str,
    *,
    connect_timeout: float,
    proxy_url: Optional[str] = None,
) -> httpx.AsyncClient:
    """Create the client for one upstream call.

    Reads are unbounded; only connection setup is timed. A registered
    transport wins over ``proxy_url``.
    """
    timeout = httpx.Timeout(
        connect=connect_timeout,
        read=None,
        write=connect_timeout,
        pool=connect_timeout,
    )
    transport = get_upstream_transport(url)
    if transport is not None:
        return httpx.AsyncClient(timeout=timeout, transport=transport)
    if proxy_url:
        return httpx.AsyncClient(timeout=timeout, proxy=proxy_url)
    return httpx.AsyncClient(timeout=timeout)


def format_httpx_error(exc: Exception, url: str) -> str:
    """Produce a concise, non-empty description of an httpx error."""
    parts = [exc.__class__.__name__]
    message = str(exc).strip()
    if message:
        parts.append(message)

    try:
        request = getattr(exc, "request", None)
    except RuntimeError:
        # httpx raises when the request was never attached
        request = None
    if request is not None:
        parts.append(f"request={request.method} {request.url}")
    else:
        parts.append(f"url={url}")

    return "; ".join(parts)
