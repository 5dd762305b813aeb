"""Transports that carry DevTools protocol traffic for a ProtocolSession.

A transport does three things: send a command and return its result, hand
every protocol event it receives to a single event handler, and announce new
child transports when a sub-target (an out-of-process iframe) gets its own
session. ``PlaywrightTransport`` implements this on top of Playwright's
``CDPSession``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from playwright.async_api import CDPSession, Error as PlaywrightError, Frame, Page

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], None]
SessionListener = Callable[["CDPTransport"], None]


# Events forwarded to catch-all listeners even when nobody subscribed by name.
# Playwright has no wildcard subscription, so the catch-all feed is limited to
# this list plus whatever was subscribed explicitly.
DEFAULT_OBSERVED_EVENTS = (
    "Network.requestWillBeSent",
    "Network.requestServedFromCache",
    "Network.responseReceived",
    "Network.dataReceived",
    "Network.loadingFinished",
    "Network.loadingFailed",
    "Network.resourceChangedPriority",
    "Page.frameNavigated",
    "Page.frameStartedLoading",
    "Page.frameStoppedLoading",
    "Page.loadEventFired",
    "Page.domContentEventFired",
    "Page.lifecycleEvent",
    "Runtime.executionContextCreated",
    "Runtime.exceptionThrown",
    "Target.attachedToTarget",
    "Target.detachedFromTarget",
    "Target.targetInfoChanged",
    "Tracing.dataCollected",
    "Tracing.tracingComplete",
)


class CDPTransport(ABC):
    """Contract every transport fulfils."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        self._event_handler: Optional[EventHandler] = None
        self._session_attached_listeners: List[SessionListener] = []
        self._session_detached_listeners: List[SessionListener] = []

    @abstractmethod
    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a protocol command and return its result payload."""

    @abstractmethod
    async def detach(self) -> None:
        """Close the underlying connection."""

    def watch(self, method: str) -> None:
        """Make sure events named ``method`` reach the event handler.

        Transports that already deliver every event need not override this.
        """

    def set_event_handler(self, handler: Optional[EventHandler]) -> None:
        self._event_handler = handler

    def emit(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Deliver one protocol event to the registered handler."""
        if self._event_handler is not None:
            self._event_handler(method, params or {})

    def add_session_attached_listener(self, listener: SessionListener) -> None:
        if listener not in self._session_attached_listeners:
            self._session_attached_listeners.append(listener)

    def remove_session_attached_listener(self, listener: SessionListener) -> None:
        if listener in self._session_attached_listeners:
            self._session_attached_listeners.remove(listener)

    def _notify_session_attached(self, child: "CDPTransport") -> None:
        for listener in list(self._session_attached_listeners):
            listener(child)

    def add_session_detached_listener(self, listener: SessionListener) -> None:
        if listener not in self._session_detached_listeners:
            self._session_detached_listeners.append(listener)

    def remove_session_detached_listener(self, listener: SessionListener) -> None:
        if listener in self._session_detached_listeners:
            self._session_detached_listeners.remove(listener)

    def _notify_session_detached(self, child: "CDPTransport") -> None:
        for listener in list(self._session_detached_listeners):
            listener(child)


class PlaywrightTransport(CDPTransport):
    """Transport backed by a Playwright ``CDPSession``."""

    def __init__(
        self,
        cdp_session: CDPSession,
        page: Optional[Page] = None,
        session_id: Optional[str] = None,
        observed_events: Iterable[str] = DEFAULT_OBSERVED_EVENTS
    ):
        """Wrap a CDP session.

        Args:
            cdp_session: Playwright CDP session to send commands through
            page: Page whose out-of-process frames should surface as child
                transports (root transport only)
            session_id: Protocol session id, when known
            observed_events: Events forwarded without an explicit subscription
        """
        super().__init__(session_id=session_id)
        self._cdp = cdp_session
        self._page = page
        self._watched: Set[str] = set()
        self._pending_tasks: Set[asyncio.Task] = set()
        self._frame_transports: Dict[Frame, "PlaywrightTransport"] = {}
        self._detached = False

        for method in observed_events:
            self.watch(method)

        self.watch("Target.attachedToTarget")
        self._cdp.on("Target.attachedToTarget", self._on_attached_to_target)

        if self._page is not None:
            self._page.on("frameattached", self._on_frame_attached)
            self._page.on("framedetached", self._on_frame_detached)

    @classmethod
    async def create(cls, page: Page, **kwargs: Any) -> "PlaywrightTransport":
        """Open a CDP session on ``page`` and wrap it."""
        cdp_session = await page.context.new_cdp_session(page)
        return cls(cdp_session, page=page, **kwargs)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        result = await self._cdp.send(method, params or {})
        return result or {}

    def watch(self, method: str) -> None:
        if method in self._watched:
            return
        self._watched.add(method)
        self._cdp.on(method, partial(self._forward, method))

    def _forward(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        self.emit(method, params or {})

    def _on_attached_to_target(self, params: Dict[str, Any]) -> None:
        """Release targets paused for this session.

        Child sessions of a Playwright CDP session cannot be addressed
        directly, so a target waiting on this session is detached, which
        resumes it. Out-of-process frames are reattached through
        ``frameattached`` instead.
        """
        if not params.get("waitingForDebugger"):
            return
        session_id = params.get("sessionId")
        if session_id:
            self._schedule(self._release_target(session_id))

    async def _release_target(self, session_id: str) -> None:
        try:
            await self._cdp.send("Target.detachFromTarget", {"sessionId": session_id})
        except PlaywrightError as e:
            logger.debug(f"Could not release paused target session {session_id}: {e}")

    def _on_frame_attached(self, frame: Frame) -> None:
        if self._detached:
            return
        self._schedule(self._attach_frame(frame))

    async def _attach_frame(self, frame: Frame) -> None:
        if self._page is None:
            return
        try:
            cdp_session = await self._page.context.new_cdp_session(frame)
        except PlaywrightError as e:
            # Same-process frames share the page session
            logger.debug(f"Frame {frame.url!r} has no separate CDP session: {e}")
            return

        logger.debug(f"Attached CDP session for out-of-process frame {frame.url!r}")
        child = PlaywrightTransport(cdp_session)
        self._frame_transports[frame] = child
        self._notify_session_attached(child)

    def _on_frame_detached(self, frame: Frame) -> None:
        child = self._frame_transports.pop(frame, None)
        if child is None:
            return
        logger.debug(f"Out-of-process frame {frame.url!r} detached")
        self._notify_session_detached(child)

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def detach(self) -> None:
        if self._detached:
            return
        self._detached = True

        if self._page is not None:
            self._page.remove_listener("frameattached", self._on_frame_attached)
            self._page.remove_listener("framedetached", self._on_frame_detached)

        for task in list(self._pending_tasks):
            task.cancel()

        try:
            await self._cdp.detach()
        except PlaywrightError as e:
            logger.debug(f"CDP session already detached: {e}")
