"""Unit tests for the Playwright-backed transport."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from pagegather.protocol.transport import DEFAULT_OBSERVED_EVENTS, PlaywrightTransport


class FakeCDPSession:
    """Stands in for a Playwright CDPSession: records handlers and commands."""

    def __init__(self):
        self.handlers = {}
        self.send = AsyncMock(return_value={"ok": True})
        self.detach = AsyncMock()

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def fire(self, event, params=None):
        for handler in self.handlers.get(event, []):
            handler(params)


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def cdp():
    return FakeCDPSession()


@pytest.fixture
def page():
    page = MagicMock()
    page.context.new_cdp_session = AsyncMock(return_value=FakeCDPSession())
    return page


class TestPlaywrightTransport:
    """Tests for commands and event forwarding."""

    @pytest.mark.asyncio
    async def test_send(self, cdp):
        transport = PlaywrightTransport(cdp)

        result = await transport.send("Page.enable")

        assert result == {"ok": True}
        cdp.send.assert_awaited_once_with("Page.enable", {})

    @pytest.mark.asyncio
    async def test_send_none_result(self, cdp):
        cdp.send.return_value = None
        transport = PlaywrightTransport(cdp)

        assert await transport.send("Page.enable", {"a": 1}) == {}

    def test_observed_events_forwarded(self, cdp):
        transport = PlaywrightTransport(cdp)
        received = []
        transport.set_event_handler(lambda method, params: received.append((method, params)))

        cdp.fire("Network.requestWillBeSent", {"requestId": "1"})
        cdp.fire("Page.loadEventFired", None)

        assert received == [
            ("Network.requestWillBeSent", {"requestId": "1"}),
            ("Page.loadEventFired", {}),
        ]
        assert set(DEFAULT_OBSERVED_EVENTS) <= set(cdp.handlers)

    def test_watch_subscribes_once(self, cdp):
        transport = PlaywrightTransport(cdp, observed_events=())
        received = []
        transport.set_event_handler(lambda method, params: received.append(method))

        transport.watch("Log.entryAdded")
        transport.watch("Log.entryAdded")
        cdp.fire("Log.entryAdded", {})

        assert received == ["Log.entryAdded"]

    def test_unwatched_events_not_forwarded(self, cdp):
        transport = PlaywrightTransport(cdp, observed_events=())
        received = []
        transport.set_event_handler(lambda method, params: received.append(method))

        cdp.fire("Network.requestWillBeSent", {})

        assert received == []

    @pytest.mark.asyncio
    async def test_create_opens_cdp_session(self, page):
        transport = await PlaywrightTransport.create(page)

        page.context.new_cdp_session.assert_awaited_once_with(page)
        page.on.assert_any_call("frameattached", transport._on_frame_attached)
        page.on.assert_any_call("framedetached", transport._on_frame_detached)


class TestPausedTargets:
    """Tests for releasing targets paused waiting for a debugger."""

    @pytest.mark.asyncio
    async def test_paused_target_detached(self, cdp):
        PlaywrightTransport(cdp)

        cdp.fire("Target.attachedToTarget", {"sessionId": "child-1", "waitingForDebugger": True})
        await settle()

        cdp.send.assert_awaited_once_with("Target.detachFromTarget", {"sessionId": "child-1"})

    @pytest.mark.asyncio
    async def test_running_target_left_alone(self, cdp):
        PlaywrightTransport(cdp)

        cdp.fire("Target.attachedToTarget", {"sessionId": "child-1", "waitingForDebugger": False})
        await settle()

        cdp.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_release_errors_ignored(self, cdp):
        cdp.send.side_effect = PlaywrightError("Target closed")
        PlaywrightTransport(cdp)

        cdp.fire("Target.attachedToTarget", {"sessionId": "child-1", "waitingForDebugger": True})
        await settle()

        cdp.send.assert_awaited_once()


class TestFrameSessions:
    """Tests for out-of-process frame sessions."""

    @pytest.mark.asyncio
    async def test_frame_session_announced(self, cdp, page):
        transport = PlaywrightTransport(cdp, page=page)
        attached = []
        transport.add_session_attached_listener(attached.append)
        frame = MagicMock(url="https://ads.example/")

        transport._on_frame_attached(frame)
        await settle()

        page.context.new_cdp_session.assert_awaited_once_with(frame)
        assert len(attached) == 1
        assert isinstance(attached[0], PlaywrightTransport)

    @pytest.mark.asyncio
    async def test_same_process_frame_ignored(self, cdp, page):
        page.context.new_cdp_session.side_effect = PlaywrightError("This frame does not have a separate CDP session")
        transport = PlaywrightTransport(cdp, page=page)
        attached = []
        transport.add_session_attached_listener(attached.append)

        transport._on_frame_attached(MagicMock(url="about:srcdoc"))
        await settle()

        assert attached == []

    @pytest.mark.asyncio
    async def test_frame_detach_announced(self, cdp, page):
        transport = PlaywrightTransport(cdp, page=page)
        attached = []
        detached = []
        transport.add_session_attached_listener(attached.append)
        transport.add_session_detached_listener(detached.append)
        frame = MagicMock(url="https://ads.example/")

        transport._on_frame_attached(frame)
        await settle()
        transport._on_frame_detached(frame)
        transport._on_frame_detached(frame)

        assert detached == attached

    @pytest.mark.asyncio
    async def test_unknown_frame_detach_ignored(self, cdp, page):
        transport = PlaywrightTransport(cdp, page=page)
        detached = []
        transport.add_session_detached_listener(detached.append)

        transport._on_frame_detached(MagicMock(url="about:srcdoc"))

        assert detached == []

    @pytest.mark.asyncio
    async def test_detach(self, cdp, page):
        transport = PlaywrightTransport(cdp, page=page)

        await transport.detach()
        await transport.detach()

        cdp.detach.assert_awaited_once()
        page.remove_listener.assert_any_call("frameattached", transport._on_frame_attached)
        page.remove_listener.assert_any_call("framedetached", transport._on_frame_detached)

    @pytest.mark.asyncio
    async def test_no_frames_after_detach(self, cdp, page):
        transport = PlaywrightTransport(cdp, page=page)
        await transport.detach()

        transport._on_frame_attached(MagicMock(url="https://ads.example/"))
        await settle()

        page.context.new_cdp_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_detach_error_ignored(self, cdp):
        cdp.detach.side_effect = PlaywrightError("Target page, context or browser has been closed")
        transport = PlaywrightTransport(cdp)

        await transport.detach()
