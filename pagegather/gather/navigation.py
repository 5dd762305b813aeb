"""Navigating the page and waiting for it to load.

``goto_url`` triggers a navigation (by URL or through a caller-supplied
requestor coroutine) and waits, within the configured ceilings, for the
main frame to navigate, first contentful paint, the load event and the
network and CPU to go quiet.
"""

import asyncio
import inspect
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from ..lib.errors import GatherError, NavigationError, NavigationErrorCode, ProtocolTimeoutError
from ..lib.url_utils import equal_with_excluded_fragments
from ..protocol.session import ProtocolSession

logger = logging.getLogger(__name__)

Requestor = Union[str, Callable[[], Awaitable[Any]]]


class WaitCondition:
    """Events ``goto_url`` can wait for."""
    NAVIGATED = "navigated"
    FCP = "fcp"
    LOAD = "load"


PAGE_HUNG_CHECK_TIMEOUT_MS = 1000
QUIET_POLL_INTERVAL_S = 0.05

_INSTALL_LONG_TASK_OBSERVER = """
(() => {
  if (window.__pagegatherLastLongTask !== undefined) return true;
  window.__pagegatherLastLongTask = 0;
  new PerformanceObserver(list => {
    for (const entry of list.getEntries()) {
      const end = entry.startTime + entry.duration;
      if (end > window.__pagegatherLastLongTask) window.__pagegatherLastLongTask = end;
    }
  }).observe({type: 'longtask', buffered: true});
  return true;
})()
"""

_TIME_SINCE_LONG_TASK = "performance.now() - (window.__pagegatherLastLongTask || 0)"

_DEBUG_CONTINUE_FLAG = "window.__pagegatherContinue === true"


class NavigationOptions(BaseModel):
    """Knobs for a single ``goto_url`` call."""

    wait_until: List[str] = Field(default_factory=lambda: [WaitCondition.LOAD])
    max_wait_for_fcp: int = 30 * 1000
    max_wait_for_load: int = 45 * 1000
    pause_after_fcp_ms: int = 0
    pause_after_load_ms: int = 0
    network_quiet_threshold_ms: int = 0
    cpu_quiet_threshold_ms: int = 0
    debug_navigation: bool = False


class NavigationResult(BaseModel):
    """URLs a navigation went through, plus any warnings."""

    requested_url: str
    main_document_url: str
    warnings: List[str] = Field(default_factory=list)


class NetworkMonitor:
    """Tracks main-frame navigations and in-flight requests on one session."""

    def __init__(self, session: ProtocolSession):
        """Initialize network monitor.

        Args:
            session: Session whose events are observed
        """
        self.session = session
        self.navigation_urls: List[str] = []
        self._inflight: set = set()
        self._last_activity = 0.0
        self._enabled = False

    async def enable(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        self._last_activity = asyncio.get_running_loop().time()

        self.session.on("Page.frameNavigated", self._on_frame_navigated)
        self.session.on("Network.requestWillBeSent", self._on_request_started)
        self.session.on("Network.loadingFinished", self._on_request_ended)
        self.session.on("Network.loadingFailed", self._on_request_ended)

        await self.session.send_command("Page.enable")
        await self.session.send_command("Network.enable")

    async def disable(self) -> None:
        self.session.off("Page.frameNavigated", self._on_frame_navigated)
        self.session.off("Network.requestWillBeSent", self._on_request_started)
        self.session.off("Network.loadingFinished", self._on_request_ended)
        self.session.off("Network.loadingFailed", self._on_request_ended)
        self._enabled = False

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def _touch(self) -> None:
        self._last_activity = asyncio.get_running_loop().time()

    def _on_frame_navigated(self, params: Dict[str, Any]) -> None:
        frame = params.get("frame", {})
        if frame.get("parentId"):
            return
        self.navigation_urls.append(frame.get("url", ""))

    def _on_request_started(self, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        if request_id:
            self._inflight.add(request_id)
        self._touch()

    def _on_request_ended(self, params: Dict[str, Any]) -> None:
        self._inflight.discard(params.get("requestId"))
        self._touch()

    async def wait_for_network_quiet(self, quiet_ms: int) -> None:
        """Wait until no request has been in flight for ``quiet_ms``."""
        loop = asyncio.get_running_loop()
        quiet_s = quiet_ms / 1000
        while True:
            if not self._inflight:
                idle_for = loop.time() - self._last_activity
                if idle_for >= quiet_s:
                    return
                await asyncio.sleep(min(quiet_s - idle_for, QUIET_POLL_INTERVAL_S * 10))
            else:
                await asyncio.sleep(QUIET_POLL_INTERVAL_S)


def get_navigation_warnings(timed_out: bool, requested_url: str, main_document_url: str) -> List[str]:
    """Warnings about a navigation that loaded, but not quite as asked."""
    warnings = []

    if timed_out:
        warnings.append(
            "The page loaded too slowly to finish within the time limit. Results may be incomplete."
        )

    if not equal_with_excluded_fragments(requested_url, main_document_url):
        warnings.append(
            f"The page may not be loading as expected because your test URL ({requested_url}) "
            f"was redirected to {main_document_url}. Try testing the second URL directly."
        )

    return warnings


async def _wait_for_cpu_idle(driver, quiet_ms: int) -> None:
    try:
        await driver.evaluate(_INSTALL_LONG_TASK_OBSERVER)
        while True:
            idle_for = await driver.evaluate(_TIME_SINCE_LONG_TASK)
            if idle_for is None or idle_for >= quiet_ms:
                return
            await asyncio.sleep(max((quiet_ms - idle_for) / 1000, QUIET_POLL_INTERVAL_S))
    except GatherError as e:
        logger.debug(f"CPU idle detection unavailable: {e}")


async def _wait_for_debug_continue(driver) -> None:
    logger.info("debug_navigation: set `window.__pagegatherContinue = true` in the page to continue")
    while not await driver.evaluate(_DEBUG_CONTINUE_FLAG, timeout_ms=math.inf):
        await asyncio.sleep(0.5)


async def _check_page_responsive(session: ProtocolSession) -> bool:
    session.set_next_protocol_timeout(PAGE_HUNG_CHECK_TIMEOUT_MS)
    try:
        await session.send_command("Runtime.evaluate", {"expression": "1", "returnByValue": True})
    except ProtocolTimeoutError:
        return False
    return True


async def goto_url(
    driver,
    requestor: Requestor,
    options: Optional[NavigationOptions] = None
) -> NavigationResult:
    """Navigate the page and wait for it to load.

    Args:
        driver: Connected Driver
        requestor: URL to navigate to, or a coroutine function that triggers
            the navigation itself
        options: Waits and ceilings for this navigation

    Returns:
        NavigationResult with requested and main-document URLs

    Raises:
        NavigationError: ``NO_FCP`` when nothing painted within
            ``max_wait_for_fcp``, ``PAGE_HUNG`` when the page stopped answering
        GatherError: If a callable requestor triggered no navigation
    """
    options = options or NavigationOptions()
    wait_until: Sequence[str] = options.wait_until
    if WaitCondition.FCP in wait_until and WaitCondition.LOAD not in wait_until:
        raise GatherError("Cannot wait for FCP without waiting for page load", error_code="invalid_wait")

    session = driver.default_session
    loop = asyncio.get_running_loop()
    monitor = NetworkMonitor(session)

    navigated = loop.create_future()
    loaded = loop.create_future()
    painted = loop.create_future()

    def on_frame_navigated(params: Dict[str, Any]) -> None:
        if not params.get("frame", {}).get("parentId") and not navigated.done():
            navigated.set_result(params["frame"].get("url"))

    def on_load(params: Optional[Dict[str, Any]] = None) -> None:
        if not loaded.done():
            loaded.set_result(True)

    def on_lifecycle(params: Dict[str, Any]) -> None:
        if params.get("name") == "firstContentfulPaint" and not painted.done():
            painted.set_result(True)

    await monitor.enable()
    session.on("Page.frameNavigated", on_frame_navigated)
    session.on("Page.loadEventFired", on_load)
    session.on("Page.lifecycleEvent", on_lifecycle)

    navigate_task = None
    try:
        await session.send_command("Page.enable")
        await session.send_command("Page.setLifecycleEventsEnabled", {"enabled": True})

        start = loop.time()
        if isinstance(requestor, str):
            logger.info(f"Navigating to {requestor}")
            # Page.navigate can take as long as the page load itself
            session.set_next_protocol_timeout(math.inf)
            navigate_task = asyncio.ensure_future(session.send_command("Page.navigate", {"url": requestor}))

            def propagate_navigate_error(task: asyncio.Future) -> None:
                if not task.cancelled() and task.exception() is not None and not navigated.done():
                    navigated.set_exception(task.exception())

            navigate_task.add_done_callback(propagate_navigate_error)
        else:
            logger.info("Running user defined requestor")
            result = requestor()
            if inspect.isawaitable(result):
                await result

        timed_out = False
        load_ceiling_s = options.max_wait_for_load / 1000

        if WaitCondition.LOAD in wait_until:
            if WaitCondition.FCP in wait_until:
                try:
                    await asyncio.wait_for(asyncio.shield(painted), options.max_wait_for_fcp / 1000)
                except asyncio.TimeoutError:
                    raise NavigationError(NavigationErrorCode.NO_FCP)
                if options.pause_after_fcp_ms:
                    await asyncio.sleep(options.pause_after_fcp_ms / 1000)

            async def wait_for_load() -> None:
                await navigated
                await loaded
                if options.pause_after_load_ms:
                    await asyncio.sleep(options.pause_after_load_ms / 1000)
                if options.network_quiet_threshold_ms:
                    await monitor.wait_for_network_quiet(options.network_quiet_threshold_ms)
                if options.cpu_quiet_threshold_ms:
                    await _wait_for_cpu_idle(driver, options.cpu_quiet_threshold_ms)

            remaining_s = max(load_ceiling_s - (loop.time() - start), 0)
            try:
                await asyncio.wait_for(wait_for_load(), remaining_s)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"Timed out waiting for page load after {options.max_wait_for_load}ms")
                if not await _check_page_responsive(session):
                    raise NavigationError(NavigationErrorCode.PAGE_HUNG)
        else:
            try:
                await asyncio.wait_for(asyncio.shield(navigated), load_ceiling_s)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"Timed out waiting for navigation after {options.max_wait_for_load}ms")

        if navigate_task is not None and navigate_task.done():
            await navigate_task

        if options.debug_navigation:
            await _wait_for_debug_continue(driver)

    finally:
        if navigate_task is not None and not navigate_task.done():
            navigate_task.cancel()
        if navigated.done() and not navigated.cancelled():
            # Mark a navigate failure as seen when another error won
            navigated.exception()
        session.off("Page.frameNavigated", on_frame_navigated)
        session.off("Page.loadEventFired", on_load)
        session.off("Page.lifecycleEvent", on_lifecycle)
        await monitor.disable()

    if isinstance(requestor, str):
        requested_url = requestor
    else:
        if not monitor.navigation_urls:
            raise GatherError(
                "No navigations detected when running user defined requestor.",
                error_code="no_navigation"
            )
        requested_url = monitor.navigation_urls[0]

    main_document_url = monitor.navigation_urls[-1] if monitor.navigation_urls else requested_url

    warnings = get_navigation_warnings(timed_out, requested_url, main_document_url)
    for warning in warnings:
        logger.warning(warning)

    return NavigationResult(
        requested_url=requested_url,
        main_document_url=main_document_url,
        warnings=warnings,
    )
