"""Login session state machine and DevTools cookie harvesting.

Both halves are pure: the harvester turns one DevTools network event into the
session cookies it reveals, and ``transition`` folds events into a new
``LoginState``. The browser-driving code in ``login_stream`` only feeds events in.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

from .session import REQUIRED_COOKIES, parse_set_cookie

COOKIE_PREFIX = "__Secure-1PSID"

REQUEST_EXTRA_INFO = "Network.requestWillBeSentExtraInfo"
RESPONSE_EXTRA_INFO = "Network.responseReceivedExtraInfo"
NETWORK_EVENTS = (REQUEST_EXTRA_INFO, RESPONSE_EXTRA_INFO)


# =============================================================================
# COOKIE HARVESTING
# =============================================================================


def _is_session_cookie(name: str | None, value: str | None) -> bool:
    return bool(name and value and name.startswith(COOKIE_PREFIX))


def harvest_request_cookies(params: Mapping[str, Any]) -> dict[str, str]:
    """Cookies already attached to an outgoing request."""
    found = {}
    for entry in params.get("associatedCookies") or []:
        cookie = (entry or {}).get("cookie") or {}
        if _is_session_cookie(cookie.get("name"), cookie.get("value")):
            found[cookie["name"]] = cookie["value"]

    headers = params.get("headers") or {}
    header = headers.get("cookie") or headers.get("Cookie") or ""
    if COOKIE_PREFIX in header:
        for pair in header.split(";"):
            name, sep, value = pair.partition("=")
            name, value = name.strip(), value.strip()
            if sep and _is_session_cookie(name, value):
                found[name] = value
    return found


def harvest_response_cookies(params: Mapping[str, Any]) -> dict[str, str]:
    """Cookies set by an incoming response."""
    headers = params.get("headers") or {}
    values = [value for name, value in headers.items() if name.lower() == "set-cookie"]
    return parse_set_cookie(values)


def harvest_event(method: str, params: Mapping[str, Any]) -> dict[str, str]:
    """Dispatch a DevTools network event to the matching harvester."""
    if method == REQUEST_EXTRA_INFO:
        return harvest_request_cookies(params)
    if method == RESPONSE_EXTRA_INFO:
        return harvest_response_cookies(params)
    return {}


def has_required(cookies: Mapping[str, str]) -> bool:
    return all(cookies.get(name) for name in REQUIRED_COOKIES)


# =============================================================================
# STATE MACHINE
# =============================================================================


class LoginStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


TERMINAL = (LoginStatus.SUCCESS, LoginStatus.TIMEOUT, LoginStatus.ERROR)


@dataclass(frozen=True)
class LoginState:
    status: LoginStatus = LoginStatus.IDLE
    captured: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    started_at: float | None = None
    deadline: float | None = None
    message: str = "No session active."

    @property
    def running(self) -> bool:
        return self.status is LoginStatus.RUNNING

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL

    def remaining(self, now: float) -> float:
        if self.deadline is None or not self.running:
            return 0.0
        return max(0.0, self.deadline - now)


@dataclass(frozen=True)
class Started:
    started_at: float
    deadline: float


@dataclass(frozen=True)
class CookiesObserved:
    cookies: Mapping[str, str]


@dataclass(frozen=True)
class DeadlineReached:
    pass


@dataclass(frozen=True)
class Failed:
    reason: str


@dataclass(frozen=True)
class Stopped:
    pass


LoginEvent = Started | CookiesObserved | DeadlineReached | Failed | Stopped


def transition(state: LoginState, event: LoginEvent) -> LoginState:
    """Fold one event into the login state.

    Only a running session reacts to cookies, deadlines and failures, so each
    terminal status is entered at most once per session.
    """
    if isinstance(event, Stopped):
        return LoginState()

    if isinstance(event, Started):
        if state.running:
            return state
        return LoginState(
            status=LoginStatus.RUNNING,
            started_at=event.started_at,
            deadline=event.deadline,
            message="Browser started. Please log in to your Google account.",
        )

    if not state.running:
        return state

    if isinstance(event, CookiesObserved):
        if not event.cookies:
            return state
        captured = MappingProxyType({**state.captured, **event.cookies})
        if has_required(captured):
            return replace(
                state, status=LoginStatus.SUCCESS, captured=captured, message="Login successful! Cookies captured."
            )
        return replace(state, captured=captured)

    if isinstance(event, DeadlineReached):
        return replace(state, status=LoginStatus.TIMEOUT, message="Session timed out.")

    if isinstance(event, Failed):
        return replace(state, status=LoginStatus.ERROR, message=event.reason)

    return state
