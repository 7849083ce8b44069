"""Image retrieval with manual redirect handling."""

import asyncio
from urllib.parse import urljoin, urlparse

import aiohttp

from ...core.exceptions import DownloadFailedException
from ...core.log import debug_log
from ...core.session import CookieStore
from .schema import DEFAULT_ENDPOINTS, USER_AGENT, Endpoints

MAX_HOPS = 8
SOFT_REDIRECT_SCHEMES = ("https://", "http://")


def soft_redirect_target(content_type: str, body: bytes) -> str | None:
    """Return the next URL if a 200 response is a soft redirect."""
    if "text/plain" not in content_type:
        return None
    text = body.decode("utf-8", errors="replace").strip()
    if text.startswith(SOFT_REDIRECT_SCHEMES) and not any(c.isspace() for c in text):
        return text
    return None


async def _follow(
    http: aiohttp.ClientSession,
    url: str,
    headers: dict,
    max_hops: int,
    timeout: aiohttp.ClientTimeout,
) -> bytes:
    current = url
    for hop in range(1, max_hops + 1):
        async with http.get(current, headers=headers, allow_redirects=False, timeout=timeout) as res:
            if 300 <= res.status < 400:
                location = res.headers.get("Location")
                if not location:
                    raise DownloadFailedException(url, "Redirect without Location header", res.status, hop)
                current = urljoin(current, location)
                debug_log(f"Redirect {hop} -> {urlparse(current).hostname}...")
                continue

            if not 200 <= res.status < 300:
                raise DownloadFailedException(url, f"HTTP {res.status}", res.status, hop)

            body = await res.read()
            target = soft_redirect_target(res.headers.get("Content-Type", ""), body)
            if target:
                current = target
                debug_log(f"Soft redirect {hop} -> {urlparse(current).hostname}...")
                continue

            return body

    raise DownloadFailedException(url, f"Too many redirects (limit {max_hops} requests)", hops=max_hops)


async def fetch_image(
    http: aiohttp.ClientSession,
    store: CookieStore,
    url: str,
    endpoints: Endpoints = DEFAULT_ENDPOINTS,
    max_hops: int = MAX_HOPS,
    timeout: float = 60,
) -> bytes:
    """Download image bytes, following 3xx and soft redirects by hand.

    The session cookies are re-sent on every hop, including cross-domain ones.
    At most ``max_hops`` requests are made in total.
    """
    headers = {
        "User-Agent": USER_AGENT,
        "Referer": endpoints.referer,
        "Cookie": store.as_header_string(),
    }
    try:
        return await _follow(http, url, headers, max_hops, aiohttp.ClientTimeout(total=timeout))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise DownloadFailedException(url, f"{type(e).__name__}: {e}") from e
