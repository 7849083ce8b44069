"""Session token extraction from the Gemini app page."""

import re
from dataclasses import dataclass

import aiohttp

from ...core.debug import dump_protocol_failure
from ...core.exceptions import AuthExpiredException, ProtocolMismatchException
from ...core.log import debug_log, log, mask
from ...core.session import CookieStore
from .schema import DEFAULT_ENDPOINTS, MANDATORY_TOKEN_KEYS, OPTIONAL_TOKEN_KEYS, USER_AGENT, Endpoints


@dataclass(frozen=True)
class SessionTokens:
    csrf_token: str
    build_id: str
    session_id: str
    push_id: str | None = None
    client_context: str | None = None


def _find_literal(html: str, key: str) -> str | None:
    match = re.search(rf'"{re.escape(key)}":"([^"]+)"', html)
    return match.group(1) if match else None


def parse_tokens(html: str) -> SessionTokens:
    """Pull the session literals out of the page's inline script data."""
    found = {}
    for field_name, key in MANDATORY_TOKEN_KEYS.items():
        value = _find_literal(html, key)
        if value is None:
            raise ProtocolMismatchException(key, f"Could not extract {field_name} from page")
        found[field_name] = value

    for field_name, key in OPTIONAL_TOKEN_KEYS.items():
        found[field_name] = _find_literal(html, key)

    return SessionTokens(**found)


async def extract_tokens(
    http: aiohttp.ClientSession,
    store: CookieStore,
    endpoints: Endpoints = DEFAULT_ENDPOINTS,
    timeout: float = 30,
) -> SessionTokens:
    """Fetch the app page and extract fresh session tokens.

    Set-Cookie headers seen on the way are merged into the store first.

    Raises:
        AuthExpiredException: the page redirected (cookies no longer valid)
        ProtocolMismatchException: a mandatory literal is missing
    """
    log("Fetching Gemini page to extract session tokens...", "→")
    headers = {"Cookie": store.as_header_string(), "User-Agent": USER_AGENT}

    async with http.get(
        endpoints.root_page,
        headers=headers,
        allow_redirects=False,
        timeout=aiohttp.ClientTimeout(total=timeout),
    ) as res:
        if 300 <= res.status < 400:
            raise AuthExpiredException(
                "Got redirect instead of the app page - cookies may be expired", status=res.status
            )

        store.refresh_from_set_cookie(res.headers.getall("Set-Cookie", []))
        html = await res.text()

        if res.status >= 400:
            error = ProtocolMismatchException("app page", f"HTTP {res.status}", status=res.status, body=html)
            dump_protocol_failure("tokens", error, html)
            raise error

    try:
        tokens = parse_tokens(html)
    except ProtocolMismatchException as e:
        dump_protocol_failure("tokens", e, html)
        raise

    debug_log(f"CSRF token: {mask(tokens.csrf_token, 20)}")
    debug_log(f"Build: {tokens.build_id}")
    debug_log(f"Session ID: {tokens.session_id}")
    if tokens.push_id:
        debug_log(f"Push-ID: {tokens.push_id}")
    return tokens
