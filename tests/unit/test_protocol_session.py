"""Unit tests for the protocol session."""

import asyncio
import math

import pytest

from conftest import FakeTransport, hang
from pagegather.lib.errors import ProtocolTimeoutError
from pagegather.models.protocol import ProtocolMessage
from pagegather.protocol.session import DEFAULT_PROTOCOL_TIMEOUT_MS, ProtocolSession


class TestSendCommand:
    """Tests for command sending and timeouts."""

    @pytest.mark.asyncio
    async def test_returns_transport_result(self, transport, session):
        """Test that the transport's payload is returned."""
        transport.respond("Page.getFrameTree", {"frameTree": {"frame": {"id": "main"}}})

        result = await session.send_command("Page.getFrameTree")

        assert result == {"frameTree": {"frame": {"id": "main"}}}
        assert transport.calls == [("Page.getFrameTree", {})]

    @pytest.mark.asyncio
    async def test_passes_params(self, transport, session):
        """Test that params reach the transport unchanged."""
        await session.send_command("Page.navigate", {"url": "https://example.com/"})
        assert transport.params_for("Page.navigate") == [{"url": "https://example.com/"}]

    @pytest.mark.asyncio
    async def test_timeout_raises_protocol_timeout_error(self, transport):
        """Test that a command without a response times out with a typed error."""
        session = ProtocolSession(transport, default_timeout_ms=20)
        transport.respond("Page.enable", hang)

        with pytest.raises(ProtocolTimeoutError) as exc_info:
            await session.send_command("Page.enable")

        assert exc_info.value.protocol_method == "Page.enable"
        assert exc_info.value.error_code == "PROTOCOL_TIMEOUT"
        assert exc_info.value.retryable is True
        assert "Page.enable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_session_usable_after_timeout(self, transport):
        """Test that a timeout does not break the session."""
        session = ProtocolSession(transport, default_timeout_ms=20)
        transport.respond("Page.enable", hang)

        with pytest.raises(ProtocolTimeoutError):
            await session.send_command("Page.enable")

        transport.respond("Page.enable", {})
        assert await session.send_command("Page.enable") == {}

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, transport, session):
        """Test that protocol errors from the transport are raised as-is."""
        transport.respond("DOM.getDocument", RuntimeError("Protocol error: DOM agent not enabled"))

        with pytest.raises(RuntimeError, match="DOM agent"):
            await session.send_command("DOM.getDocument")


class TestProtocolTimeouts:
    """Tests for timeout selection."""

    def test_default_timeout(self, transport):
        """Test the process-wide default."""
        session = ProtocolSession(transport)
        assert session.default_timeout_ms == DEFAULT_PROTOCOL_TIMEOUT_MS
        assert session.get_next_protocol_timeout() == DEFAULT_PROTOCOL_TIMEOUT_MS
        assert not session.has_next_protocol_timeout()

    def test_next_timeout_is_reported(self, session):
        """Test that a one-shot timeout is visible until used."""
        session.set_next_protocol_timeout(5000)
        assert session.has_next_protocol_timeout()
        assert session.get_next_protocol_timeout() == 5000

    @pytest.mark.asyncio
    async def test_next_timeout_applies_once(self, transport):
        """Test that the one-shot timeout is consumed by the next command."""
        session = ProtocolSession(transport, default_timeout_ms=1000)
        transport.respond("Page.enable", hang)

        session.set_next_protocol_timeout(10)
        with pytest.raises(ProtocolTimeoutError) as exc_info:
            await session.send_command("Page.enable")

        assert exc_info.value.details["timeout_ms"] == 10
        assert not session.has_next_protocol_timeout()

    @pytest.mark.asyncio
    async def test_infinite_timeout_disables_timeout(self, transport):
        """Test that math.inf waits for as long as the response takes."""
        session = ProtocolSession(transport, default_timeout_ms=10)

        async def slow(params):
            await asyncio.sleep(0.05)
            return {"frameId": "main"}

        transport.respond("Page.navigate", slow)
        session.set_next_protocol_timeout(math.inf)

        assert await session.send_command("Page.navigate", {"url": "https://example.com/"}) == {"frameId": "main"}

    @pytest.mark.asyncio
    async def test_method_timeout(self, transport):
        """Test that a per-method timeout beats the default."""
        session = ProtocolSession(transport, default_timeout_ms=5000, method_timeouts={"Storage.clearDataForOrigin": 10})
        transport.respond("Storage.clearDataForOrigin", hang)

        with pytest.raises(ProtocolTimeoutError) as exc_info:
            await session.send_command("Storage.clearDataForOrigin")

        assert exc_info.value.details["timeout_ms"] == 10

    @pytest.mark.asyncio
    async def test_next_timeout_beats_method_timeout(self, transport):
        """Test precedence of the one-shot timeout over the per-method map."""
        session = ProtocolSession(transport, default_timeout_ms=5000)
        session.set_method_timeout("Page.enable", 5000)
        transport.respond("Page.enable", hang)

        session.set_next_protocol_timeout(10)
        with pytest.raises(ProtocolTimeoutError) as exc_info:
            await session.send_command("Page.enable")

        assert exc_info.value.details["timeout_ms"] == 10


class TestEventSubscription:
    """Tests for named event listeners."""

    def test_on_receives_params(self, transport, session):
        """Test that a named listener receives event params."""
        received = []
        session.on("Page.loadEventFired", received.append)

        transport.emit("Page.loadEventFired", {"timestamp": 1.5})

        assert received == [{"timestamp": 1.5}]

    def test_on_watches_event(self, transport, session):
        """Test that subscribing asks the transport to deliver the event."""
        session.on("Network.dataReceived", lambda params: None)
        assert "Network.dataReceived" in transport.watched

    def test_same_listener_registered_twice_fires_once(self, transport, session):
        """Test that duplicate registration is ignored."""
        received = []
        session.on("Page.loadEventFired", received.append)
        session.on("Page.loadEventFired", received.append)

        transport.emit("Page.loadEventFired", {})

        assert len(received) == 1
        assert session.listener_count("Page.loadEventFired") == 1

    def test_off_removes_listener(self, transport, session):
        """Test that off stops delivery."""
        received = []
        session.on("Page.loadEventFired", received.append)
        session.off("Page.loadEventFired", received.append)

        transport.emit("Page.loadEventFired", {})

        assert received == []
        assert session.listener_count() == 0

    def test_off_unknown_listener_is_noop(self, session):
        """Test that removing a listener that was never added is harmless."""
        session.off("Page.loadEventFired", lambda params: None)
        assert session.listener_count() == 0

    def test_once_fires_a_single_time(self, transport, session):
        """Test that once listeners unsubscribe after the first event."""
        received = []
        session.once("Page.frameNavigated", received.append)

        transport.emit("Page.frameNavigated", {"frame": {"id": "1"}})
        transport.emit("Page.frameNavigated", {"frame": {"id": "2"}})

        assert received == [{"frame": {"id": "1"}}]
        assert session.listener_count("Page.frameNavigated") == 0

    def test_off_removes_once_listener(self, transport, session):
        """Test that a once listener can be removed before it fires."""
        received = []
        session.once("Page.frameNavigated", received.append)
        session.off("Page.frameNavigated", received.append)

        transport.emit("Page.frameNavigated", {})

        assert received == []

    def test_listener_errors_do_not_break_dispatch(self, transport, session):
        """Test that a failing listener does not stop the others."""
        received = []

        def broken(params):
            raise ValueError("boom")

        session.on("Page.loadEventFired", broken)
        session.on("Page.loadEventFired", received.append)

        transport.emit("Page.loadEventFired", {"timestamp": 2})

        assert received == [{"timestamp": 2}]

    @pytest.mark.asyncio
    async def test_coroutine_listeners_are_scheduled(self, transport, session):
        """Test that async listeners run on the event loop."""
        received = []

        async def listener(params):
            received.append(params)

        session.on("Page.loadEventFired", listener)
        transport.emit("Page.loadEventFired", {"timestamp": 3})
        await asyncio.sleep(0)

        assert received == [{"timestamp": 3}]


class TestProtocolMessageListeners:
    """Tests for the catch-all feed."""

    def test_receives_every_event(self, transport, session):
        """Test that catch-all listeners get a ProtocolMessage for each event."""
        messages = []
        session.add_protocol_message_listener(messages.append)

        transport.emit("Network.requestWillBeSent", {"requestId": "1"})
        transport.emit("Page.loadEventFired", {})

        assert [message.method for message in messages] == ["Network.requestWillBeSent", "Page.loadEventFired"]
        assert isinstance(messages[0], ProtocolMessage)
        assert messages[0].params == {"requestId": "1"}

    def test_message_carries_session_id(self):
        """Test that messages are stamped with the transport's session id."""
        transport = FakeTransport(session_id="child-session")
        session = ProtocolSession(transport)
        messages = []
        session.add_protocol_message_listener(messages.append)

        transport.emit("Runtime.executionContextCreated", {"context": {"id": 1}})

        assert messages[0].session_id == "child-session"

    def test_named_listeners_run_before_catch_all(self, transport, session):
        """Test dispatch order."""
        order = []
        session.add_protocol_message_listener(lambda message: order.append("catch-all"))
        session.on("Page.loadEventFired", lambda params: order.append("named"))

        transport.emit("Page.loadEventFired", {})

        assert order == ["named", "catch-all"]

    def test_remove_protocol_message_listener(self, transport, session):
        """Test removing a catch-all listener."""
        messages = []
        session.add_protocol_message_listener(messages.append)
        session.remove_protocol_message_listener(messages.append)

        transport.emit("Page.loadEventFired", {})

        assert messages == []


class TestDispose:
    """Tests for session disposal."""

    @pytest.mark.asyncio
    async def test_dispose_drops_listeners_and_detaches(self, transport, session):
        """Test that dispose clears every listener and detaches the transport."""
        received = []
        session.on("Page.loadEventFired", received.append)
        session.add_protocol_message_listener(received.append)

        await session.dispose()
        transport.emit("Page.loadEventFired", {})

        assert session.disposed
        assert transport.detached
        assert received == []
        assert session.listener_count() == 0

    @pytest.mark.asyncio
    async def test_dispose_twice_is_safe(self, session):
        """Test that dispose is idempotent."""
        await session.dispose()
        await session.dispose()
        assert session.disposed
