"""Remote browser login: cookie harvesting plus a screen/input relay.

A Chromium tab is opened on the Google sign-in page. Session cookies are read
off the DevTools network stream while a human drives the tab through the
relay WebSocket (screencast frames out, clicks and keys in). The relay is
optional; login progress comes only from the network events.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from .core.browser import close_browser, launch_browser
from .core.config import get_setting
from .core.exceptions import LoginInProgressException, SessionErrorException, SessionTimeoutException
from .core.harvest import (
    NETWORK_EVENTS,
    CookiesObserved,
    DeadlineReached,
    Failed,
    LoginEvent,
    LoginState,
    LoginStatus,
    Started,
    Stopped,
    harvest_event,
    has_required,
    transition,
)
from .core.log import debug_log, log, log_context
from .core.session import CookieStore
from .providers.gemini.schema import DEFAULT_ENDPOINTS, Endpoints

SCREENCAST_FRAME = "Page.screencastFrame"
LOAD_EVENT = "Page.loadEventFired"
RESTORE_SETTLE_SECONDS = 3.0

# Named keys sent as rawKeyDown/keyUp pairs with their virtual key codes
NAMED_KEYS = {
    "Enter": 13,
    "Backspace": 8,
    "Tab": 9,
    "Escape": 27,
    "ArrowLeft": 37,
    "ArrowUp": 38,
    "ArrowRight": 39,
    "ArrowDown": 40,
}

CLICK_PRESS_DELAY = 0.03
CLICK_RELEASE_DELAY = 0.05


class LoginBrowser(Protocol):
    """The slice of a DevTools session the login flow needs."""

    def on(self, event: str, handler: Callable[[dict], Any]) -> None: ...

    async def send(self, method: str, params: dict | None = None) -> Any: ...

    async def close(self) -> None: ...

    def on_closed(self, callback: Callable[[str], Any]) -> None: ...


class PlaywrightLoginBrowser:
    """Chromium page plus its CDP session, launched through Playwright."""

    def __init__(self, playwright, browser, context, page, cdp):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.cdp = cdp

    @classmethod
    async def launch(cls, headless: bool | None = None, purpose: str = "login") -> "PlaywrightLoginBrowser":
        playwright, browser, context, page = await launch_browser(headless=headless, purpose=purpose)
        try:
            cdp = await context.new_cdp_session(page)
        except Exception:
            await close_browser(playwright, browser, context, page)
            raise
        return cls(playwright, browser, context, page, cdp)

    def on(self, event: str, handler: Callable[[dict], Any]) -> None:
        self.cdp.on(event, handler)

    async def send(self, method: str, params: dict | None = None) -> Any:
        return await self.cdp.send(method, params or {})

    def on_closed(self, callback: Callable[[str], Any]) -> None:
        """Call ``callback(reason)`` once the login tab or its browser goes away."""
        self.page.on("close", lambda _page: callback("Login tab was closed"))
        self.page.on("crash", lambda _page: callback("Login tab crashed"))
        if self.browser is not None:
            self.browser.on("disconnected", lambda _browser: callback("Browser disconnected"))
        else:
            self.context.on("close", lambda _context: callback("Browser was closed"))

    async def close(self) -> None:
        try:
            await self.cdp.detach()
        except Exception as e:
            debug_log(f"CDP detach: {e}")
        await close_browser(self.playwright, self.browser, self.context, self.page)


BrowserFactory = Callable[..., Awaitable[LoginBrowser]]


def input_commands(message: dict) -> list[tuple[str, dict, float]]:
    """Translate one relay input message into CDP calls.

    Returns ``(method, params, delay_before)`` tuples. Unknown or malformed
    messages yield an empty list.
    """
    kind = message.get("type")

    if kind == "click":
        x, y = message.get("x"), message.get("y")
        if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
            return []
        button = {"x": x, "y": y, "button": "left", "clickCount": 1}
        return [
            ("Input.dispatchMouseEvent", {"type": "mouseMoved", "x": x, "y": y}, 0.0),
            ("Input.dispatchMouseEvent", {"type": "mousePressed", **button}, CLICK_PRESS_DELAY),
            ("Input.dispatchMouseEvent", {"type": "mouseReleased", **button}, CLICK_RELEASE_DELAY),
        ]

    if kind == "keydown":
        key = message.get("key")
        if not isinstance(key, str) or not key:
            return []
        if key in NAMED_KEYS:
            down = {"type": "rawKeyDown", "key": key, "code": key, "windowsVirtualKeyCode": NAMED_KEYS[key]}
            up = {"type": "keyUp", "key": key, "code": key, "windowsVirtualKeyCode": NAMED_KEYS[key]}
            commands = [("Input.dispatchKeyEvent", down, 0.0)]
            if key == "Enter":
                commands.append(("Input.dispatchKeyEvent", {"type": "char", "text": "\r"}, 0.0))
            commands.append(("Input.dispatchKeyEvent", up, 0.0))
            return commands
        return [
            ("Input.dispatchKeyEvent", {"type": "keyDown", "key": key, "text": key}, 0.0),
            ("Input.dispatchKeyEvent", {"type": "keyUp", "key": key}, 0.0),
        ]

    if kind == "type":
        text = message.get("text")
        if not isinstance(text, str) or not text:
            return []
        return [("Input.insertText", {"text": text}, 0.0)]

    return []


class AuthSessionManager:
    """Owns the single remote login session and its relay observers."""

    def __init__(
        self,
        store: CookieStore,
        browser_factory: BrowserFactory | None = None,
        timeout: float | None = None,
        grace: float | None = None,
        endpoints: Endpoints = DEFAULT_ENDPOINTS,
    ):
        self.store = store
        self.endpoints = endpoints
        self.timeout = float(timeout if timeout is not None else get_setting("login_timeout", 300))
        self.grace = float(grace if grace is not None else get_setting("login_grace", 4.0))
        self._browser_factory = browser_factory or PlaywrightLoginBrowser.launch

        self.state = LoginState()
        self.clients = set()
        self._browser: LoginBrowser | None = None
        self._lock = asyncio.Lock()
        self._done = asyncio.Event()
        self._deadline_task: asyncio.Task | None = None
        self._teardown_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.state.running

    def status(self) -> dict:
        return {
            "status": self.state.status.value,
            "message": self.state.message,
            "remainingMs": int(self.state.remaining(time.time()) * 1000),
        }

    def _apply(self, event: LoginEvent) -> LoginState:
        previous = self.state
        self.state = transition(previous, event)
        if previous.running and self.state.finished:
            self._on_finished(self.state)
        return self.state

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_finished(self, state: LoginState):
        if state.status is LoginStatus.SUCCESS:
            log("Auth cookies captured successfully!", "★")
            captured = dict(state.captured)
            self.store.merge(captured)
            self.store.persist(captured)
            self._spawn(self._broadcast_json({"type": "success"}))
            self._teardown_task = self._spawn(self._teardown_after(self.grace))
        else:
            log(f"Login session ended: {state.message}", "✕" if state.status is LoginStatus.ERROR else "○")
            self._spawn(self._broadcast_json({"type": state.status.value, "message": state.message}))
            self._teardown_task = self._spawn(self._teardown_after(0))
        self._done.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> LoginState:
        """Open the login tab. Rejected while another session is running."""
        async with self._lock:
            if self.state.running:
                raise LoginInProgressException()

            await self._teardown()
            now = time.time()
            self._done = asyncio.Event()
            self._apply(Started(started_at=now, deadline=now + self.timeout))

            with log_context("login"):
                log("Starting Chromium and creating login tab...", "▸")
                try:
                    self._browser = await self._browser_factory(purpose="login")
                    for method in NETWORK_EVENTS:
                        self._browser.on(method, self._network_handler(method))
                    self._browser.on(SCREENCAST_FRAME, self._on_frame)
                    self._browser.on_closed(self._lost_handler(self._browser))

                    await self._browser.send("Page.enable")
                    await self._browser.send("Network.enable")
                    await self._browser.send(
                        "Page.startScreencast",
                        {
                            "format": "jpeg",
                            "quality": 60,
                            "maxWidth": int(get_setting("viewport_width", 1280)),
                            "maxHeight": int(get_setting("viewport_height", 800)),
                        },
                    )
                    await self._browser.send("Page.navigate", {"url": self.endpoints.login_url})
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"
                    log(f"Start failed: {reason}", "✕")
                    self._apply(Failed(reason))
                    await self._teardown()
                    raise SessionErrorException(reason) from e

                if self.state.running:
                    self._deadline_task = self._spawn(self._expire(self.timeout))
                    log(f"Session started ({self.timeout:.0f}s to log in)", "✓")
            return self.state

    async def stop(self) -> LoginState:
        """Tear down whatever is running and go back to idle."""
        async with self._lock:
            was_running = self.state.running
            self._apply(Stopped())
            self._done.set()
            await self._teardown()
            if was_running:
                log("Login session stopped", "○")
            return self.state

    async def wait(self) -> LoginState:
        """Block until the current session ends.

        Raises:
            SessionTimeoutException: the deadline passed first
            SessionErrorException: the browser failed or the session was stopped
        """
        await self._done.wait()
        state = self.state
        if state.status is LoginStatus.SUCCESS:
            return state
        if state.status is LoginStatus.TIMEOUT:
            raise SessionTimeoutException(self.timeout)
        if state.status is LoginStatus.ERROR:
            raise SessionErrorException(state.message)
        raise SessionErrorException("Login session was stopped")

    async def _expire(self, delay: float):
        await asyncio.sleep(delay)
        if self.state.running:
            log("Session timed out.", "○")
            self._apply(DeadlineReached())

    async def _teardown_after(self, delay: float):
        if delay:
            await asyncio.sleep(delay)
        await self._teardown()

    async def _teardown(self):
        """Release the browser and observers. Safe to call repeatedly."""
        current = asyncio.current_task()
        for task in (self._deadline_task, self._teardown_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._deadline_task = None
        self._teardown_task = None

        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                await browser.send("Page.stopScreencast")
            except Exception as e:
                debug_log(f"stopScreencast: {e}")
            try:
                await browser.close()
            except Exception as e:
                log(f"Warning closing login browser: {e}", "⚠")

        clients, self.clients = self.clients, set()
        for ws in clients:
            try:
                await ws.close()
            except Exception as e:
                debug_log(f"Closing relay client: {e}")

    # ------------------------------------------------------------------
    # DevTools events
    # ------------------------------------------------------------------

    def _network_handler(self, method: str):
        def handler(params: dict):
            self.handle_network_event(method, params)

        return handler

    def handle_network_event(self, method: str, params: dict):
        """Feed one DevTools network event into the state machine."""
        cookies = harvest_event(method, params or {})
        if not cookies:
            return
        for name in cookies:
            if name not in self.state.captured:
                debug_log(f"Captured {name} from {method.rsplit('.', 1)[-1]}")
        self._apply(CookiesObserved(cookies))

    def _lost_handler(self, browser: LoginBrowser):
        def handler(reason: str):
            self._browser_failed(browser, reason)

        return handler

    def _browser_failed(self, browser: LoginBrowser, reason: str):
        """Move a running session to ``error`` when its browser stops responding."""
        if browser is not self._browser or not self.state.running:
            return
        log(f"Login browser lost: {reason}", "✕")
        self._apply(Failed(reason))

    def _on_frame(self, params: dict):
        self._spawn(self._forward_frame(params))

    async def _forward_frame(self, params: dict):
        browser = self._browser
        if browser is None:
            return
        try:
            await browser.send("Page.screencastFrameAck", {"sessionId": params.get("sessionId")})
        except Exception as e:
            self._browser_failed(browser, f"Frame ack failed: {e}")
            return
        await self._broadcast_json({"type": "frame", "data": params.get("data"), "metadata": params.get("metadata")})

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------

    def attach(self, ws):
        self.clients.add(ws)
        log(f"Relay client connected ({len(self.clients)} total)", "→")

    def detach(self, ws):
        self.clients.discard(ws)

    async def _broadcast_json(self, data: dict):
        """Broadcast JSON to all clients."""
        msg = json.dumps(data)
        dead = set()
        for ws in list(self.clients):
            try:
                await ws.send_str(msg)
            except Exception:
                dead.add(ws)
        self.clients -= dead

    async def handle_input(self, message: dict | str):
        """Replay one observer input message into the login tab."""
        if isinstance(message, str):
            try:
                message = json.loads(message)
            except json.JSONDecodeError:
                log("Ignoring malformed relay message", "⚠")
                return
        if not isinstance(message, dict):
            log("Ignoring malformed relay message", "⚠")
            return

        commands = input_commands(message)
        if not commands:
            debug_log(f"Ignoring relay message: {message.get('type')!r}")
            return

        browser = self._browser
        if browser is None or not self.state.running:
            return
        try:
            for method, params, delay in commands:
                if delay:
                    await asyncio.sleep(delay)
                await browser.send(method, params)
        except Exception as e:
            self._browser_failed(browser, f"Event error: {e}")

    # ------------------------------------------------------------------
    # Profile restore
    # ------------------------------------------------------------------

    async def restore_session(self, timeout: float | None = None) -> bool:
        """Try to recover cookies from the persistent browser profile. Never raises."""
        if self.state.running:
            return False

        timeout = float(timeout if timeout is not None else get_setting("restore_timeout", 30))
        captured: dict[str, str] = {}
        loaded = asyncio.Event()

        def collect(method: str):
            def handler(params: dict):
                captured.update(harvest_event(method, params or {}))

            return handler

        with log_context("restore"):
            try:
                browser = await self._browser_factory(headless=True, purpose="restore")
            except Exception as e:
                log(f"Could not launch browser for session restore: {e}", "⚠")
                return False

            try:
                for method in NETWORK_EVENTS:
                    browser.on(method, collect(method))
                browser.on(LOAD_EVENT, lambda _params: loaded.set())

                await browser.send("Network.enable")
                await browser.send("Page.enable")
                await browser.send("Page.navigate", {"url": self.endpoints.root_page})

                try:
                    await asyncio.wait_for(loaded.wait(), timeout)
                    await asyncio.sleep(RESTORE_SETTLE_SECONDS)
                except asyncio.TimeoutError:
                    log("Session restore timed out", "○")
            except Exception as e:
                log(f"Session restore failed: {e}", "⚠")
                return False
            finally:
                try:
                    await browser.close()
                except Exception as e:
                    debug_log(f"Closing restore browser: {e}")

            if not has_required(captured):
                log("No session found in browser profile", "○")
                return False

            self.store.merge(captured)
            self.store.persist(captured)
            log("Session restored from browser profile", "✓")
            return True
