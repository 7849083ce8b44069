"""Tests for the remote login session manager and its relay."""

import asyncio

import pytest

from imagegen import login_stream
from imagegen.core.exceptions import LoginInProgressException, SessionErrorException, SessionTimeoutException
from imagegen.core.harvest import REQUEST_EXTRA_INFO, RESPONSE_EXTRA_INFO
from imagegen.core.session import PSID, PSIDTS, CookieStore
from imagegen.login_stream import LOAD_EVENT, SCREENCAST_FRAME, AuthSessionManager, input_commands
from imagegen.providers.gemini.schema import DEFAULT_ENDPOINTS

from .helpers import FakeBrowser, FakeSocket, session_cookie_events


def factory_for(browser, calls=None):
    async def factory(**kwargs):
        if calls is not None:
            calls.append(kwargs)
        return browser

    return factory


def emit_login_cookies(browser, psid="psid-value", psidts="psidts-value"):
    request_event, response_event = session_cookie_events(psid, psidts)
    browser.emit(REQUEST_EXTRA_INFO, request_event)
    browser.emit(RESPONSE_EXTRA_INFO, response_event)


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def login_store(tmp_path):
    return CookieStore(persist_path=tmp_path / ".env")


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_opens_login_tab(self, browser, login_store):
        calls = []
        manager = AuthSessionManager(login_store, factory_for(browser, calls), timeout=30, grace=0)

        await manager.start()
        try:
            assert calls == [{"purpose": "login"}]
            assert browser.methods() == ["Page.enable", "Network.enable", "Page.startScreencast", "Page.navigate"]
            assert browser.sent[-1][1] == {"url": DEFAULT_ENDPOINTS.login_url}
            status = manager.status()
            assert status["status"] == "running"
            assert 0 < status["remainingMs"] <= 30000
        finally:
            await manager.stop()

    async def test_second_start_rejected(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        try:
            with pytest.raises(LoginInProgressException):
                await manager.start()
        finally:
            await manager.stop()

    async def test_cookies_complete_the_session(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0.01)
        observer = FakeSocket()
        await manager.start()
        manager.attach(observer)

        emit_login_cookies(browser)
        state = await asyncio.wait_for(manager.wait(), 2)
        await asyncio.sleep(0.1)

        assert dict(state.captured) == {PSID: "psid-value", PSIDTS: "psidts-value"}
        assert login_store.get(PSID) == "psid-value"
        assert "psidts-value" in login_store.persist_path.read_text()
        assert observer.types() == ["success"]
        assert observer.closed
        assert browser.closed
        assert manager.status()["status"] == "success"
        assert manager.status()["remainingMs"] == 0

    async def test_partial_cookies_keep_running(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        try:
            request_event, _ = session_cookie_events()
            browser.emit(REQUEST_EXTRA_INFO, request_event)
            assert manager.running
            assert login_store.get(PSID) is None
        finally:
            await manager.stop()

    async def test_deadline(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=0.05, grace=0)
        observer = FakeSocket()
        await manager.start()
        manager.attach(observer)

        with pytest.raises(SessionTimeoutException):
            await asyncio.wait_for(manager.wait(), 2)
        await asyncio.sleep(0.05)

        assert manager.status()["status"] == "timeout"
        assert observer.types() == ["timeout"]
        assert browser.closed

    async def test_stop(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()

        await manager.stop()

        assert manager.status()["status"] == "idle"
        assert browser.closed
        assert "Page.stopScreencast" in browser.methods()
        with pytest.raises(SessionErrorException):
            await manager.wait()

    async def test_launch_failure(self, login_store):
        async def broken_factory(**_kwargs):
            raise RuntimeError("no chromium")

        manager = AuthSessionManager(login_store, broken_factory, timeout=30, grace=0)
        with pytest.raises(SessionErrorException) as exc:
            await manager.start()

        assert "no chromium" in str(exc.value)
        assert manager.status()["status"] == "error"
        assert not manager.running

    async def test_success_handled_once(self, browser, login_store, monkeypatch):
        merges = []
        original_merge = login_store.merge

        def counting_merge(updates):
            merges.append(dict(updates))
            original_merge(updates)

        monkeypatch.setattr(login_store, "merge", counting_merge)
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0.05)
        observer = FakeSocket()
        await manager.start()
        manager.attach(observer)

        emit_login_cookies(browser)
        emit_login_cookies(browser, "later-psid", "later-ts")
        await asyncio.wait_for(manager.wait(), 2)
        await asyncio.sleep(0.1)

        assert merges == [{PSID: "psid-value", PSIDTS: "psidts-value"}]
        assert login_store.get(PSID) == "psid-value"
        assert observer.types() == ["success"]

    async def test_closed_browser_ends_session(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        observer = FakeSocket()
        await manager.start()
        manager.attach(observer)

        browser.lose("Login tab crashed")

        with pytest.raises(SessionErrorException) as exc:
            await asyncio.wait_for(manager.wait(), 2)
        assert "Login tab crashed" in str(exc.value)
        await asyncio.sleep(0.05)
        assert manager.status()["status"] == "error"
        assert observer.types() == ["error"]
        assert browser.closed

        second = FakeBrowser()
        manager._browser_factory = factory_for(second)
        await manager.start()
        try:
            assert manager.running
        finally:
            await manager.stop()

    async def test_failing_input_ends_session(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        browser.send_error = RuntimeError("Target page, context or browser has been closed")

        await manager.handle_input({"type": "type", "text": "x"})

        status = manager.status()
        assert status["status"] == "error"
        assert "has been closed" in status["message"]
        with pytest.raises(SessionErrorException):
            await manager.wait()

    async def test_failing_frame_ack_ends_session(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        browser.send_error = RuntimeError("Target closed")

        browser.emit(SCREENCAST_FRAME, {"sessionId": 1, "data": "x", "metadata": {}})
        await asyncio.sleep(0.05)

        assert manager.status()["status"] == "error"

    async def test_lost_browser_ignored_after_stop(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        await manager.stop()

        browser.lose()

        assert manager.status()["status"] == "idle"

    async def test_restart_after_finish(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=0.01, grace=0)
        await manager.start()
        with pytest.raises(SessionTimeoutException):
            await asyncio.wait_for(manager.wait(), 2)

        second = FakeBrowser()
        manager._browser_factory = factory_for(second)
        await manager.start()
        try:
            assert manager.running
            assert second.methods()[-1] == "Page.navigate"
        finally:
            await manager.stop()


# =============================================================================
# Relay
# =============================================================================


class TestInputCommands:
    def test_click(self):
        commands = input_commands({"type": "click", "x": 10, "y": 20.5})
        assert [params["type"] for _, params, _ in commands] == ["mouseMoved", "mousePressed", "mouseReleased"]
        assert commands[1][1]["button"] == "left"
        assert commands[1][2] > 0

    def test_named_key(self):
        commands = input_commands({"type": "keydown", "key": "Tab"})
        assert [params["type"] for _, params, _ in commands] == ["rawKeyDown", "keyUp"]
        assert commands[0][1]["windowsVirtualKeyCode"] == 9

    def test_enter_sends_carriage_return(self):
        commands = input_commands({"type": "keydown", "key": "Enter"})
        assert [params["type"] for _, params, _ in commands] == ["rawKeyDown", "char", "keyUp"]
        assert commands[1][1]["text"] == "\r"

    def test_printable_key(self):
        commands = input_commands({"type": "keydown", "key": "a"})
        assert commands[0][1] == {"type": "keyDown", "key": "a", "text": "a"}

    def test_type(self):
        assert input_commands({"type": "type", "text": "me@example.com"}) == [
            ("Input.insertText", {"text": "me@example.com"}, 0.0)
        ]

    def test_invalid(self):
        assert input_commands({"type": "click", "x": "left"}) == []
        assert input_commands({"type": "keydown"}) == []
        assert input_commands({"type": "type", "text": ""}) == []
        assert input_commands({"type": "scroll"}) == []


@pytest.mark.asyncio
class TestRelay:
    async def test_input_replayed_while_running(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        try:
            await manager.handle_input('{"type": "type", "text": "hello"}')
            await manager.handle_input({"type": "keydown", "key": "Enter"})
            assert ("Input.insertText", {"text": "hello"}) in browser.sent
            assert browser.methods()[-3:] == ["Input.dispatchKeyEvent"] * 3
        finally:
            await manager.stop()

    async def test_malformed_input_ignored(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        await manager.start()
        try:
            before = len(browser.sent)
            await manager.handle_input("{not json")
            await manager.handle_input("[1, 2]")
            await manager.handle_input({"type": "unknown"})
            assert len(browser.sent) == before
        finally:
            await manager.stop()

    async def test_input_ignored_when_idle(self, login_store):
        manager = AuthSessionManager(login_store, factory_for(FakeBrowser()), timeout=30, grace=0)
        await manager.handle_input({"type": "type", "text": "x"})

    async def test_frames_acked_and_broadcast(self, browser, login_store):
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)
        observer = FakeSocket()
        await manager.start()
        manager.attach(observer)
        try:
            browser.emit(SCREENCAST_FRAME, {"sessionId": 7, "data": "base64jpeg", "metadata": {"deviceWidth": 1280}})
            await asyncio.sleep(0.01)

            assert ("Page.screencastFrameAck", {"sessionId": 7}) in browser.sent
            assert observer.messages == [
                {"type": "frame", "data": "base64jpeg", "metadata": {"deviceWidth": 1280}}
            ]
        finally:
            await manager.stop()

    async def test_dead_clients_dropped(self, login_store):
        manager = AuthSessionManager(login_store, factory_for(FakeBrowser()), timeout=30, grace=0)
        good, dead = FakeSocket(), FakeSocket(broken=True)
        manager.attach(good)
        manager.attach(dead)

        await manager._broadcast_json({"type": "frame", "data": "x", "metadata": {}})

        assert manager.clients == {good}
        assert good.types() == ["frame"]


# =============================================================================
# Profile restore
# =============================================================================


@pytest.mark.asyncio
class TestRestoreSession:
    @pytest.fixture(autouse=True)
    def no_settle_delay(self, monkeypatch):
        monkeypatch.setattr(login_stream, "RESTORE_SETTLE_SECONDS", 0)

    async def test_restores_cookies_from_profile(self, login_store):
        def on_navigate(browser):
            emit_login_cookies(browser, "restored-psid", "restored-ts")
            browser.emit(LOAD_EVENT, {})

        browser = FakeBrowser(on_navigate=on_navigate)
        calls = []
        manager = AuthSessionManager(login_store, factory_for(browser, calls), timeout=30, grace=0)

        assert await manager.restore_session(timeout=2)

        assert calls == [{"headless": True, "purpose": "restore"}]
        assert browser.sent[-1] == ("Page.navigate", {"url": DEFAULT_ENDPOINTS.root_page})
        assert login_store.get(PSID) == "restored-psid"
        assert login_store.get(PSIDTS) == "restored-ts"
        assert browser.closed

    async def test_no_session_in_profile(self, login_store):
        browser = FakeBrowser(on_navigate=lambda b: b.emit(LOAD_EVENT, {}))
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)

        assert not await manager.restore_session(timeout=2)
        assert len(login_store) == 0
        assert browser.closed

    async def test_page_never_loads(self, login_store):
        browser = FakeBrowser()
        manager = AuthSessionManager(login_store, factory_for(browser), timeout=30, grace=0)

        assert not await manager.restore_session(timeout=0.05)
        assert browser.closed

    async def test_launch_failure_returns_false(self, login_store):
        async def broken_factory(**_kwargs):
            raise RuntimeError("profile locked")

        manager = AuthSessionManager(login_store, broken_factory, timeout=30, grace=0)
        assert not await manager.restore_session(timeout=1)
