"""Driver: the runner's handle on one page.

Owns the root ProtocolSession and the TargetManager built on it.
"""

import logging
from typing import Any, Optional

from playwright.async_api import Page

from ..lib.errors import GatherError
from ..protocol.session import DEFAULT_PROTOCOL_TIMEOUT_MS, ProtocolSession
from ..protocol.target_manager import TargetManager
from ..protocol.transport import CDPTransport, PlaywrightTransport

logger = logging.getLogger(__name__)


class Driver:
    """Connects to a page over the DevTools protocol."""

    def __init__(
        self,
        page: Optional[Page] = None,
        transport: Optional[CDPTransport] = None,
        protocol_timeout_ms: float = DEFAULT_PROTOCOL_TIMEOUT_MS
    ):
        """Initialize driver.

        Args:
            page: Playwright page to drive
            transport: Transport to use instead of opening one on ``page``
            protocol_timeout_ms: Default timeout for protocol commands
        """
        if page is None and transport is None:
            raise ValueError("Driver needs a page or a transport")

        self.page = page
        self._transport = transport
        self.protocol_timeout_ms = protocol_timeout_ms
        self._session: Optional[ProtocolSession] = None
        self._target_manager: Optional[TargetManager] = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    @property
    def default_session(self) -> ProtocolSession:
        if self._session is None:
            raise GatherError("Driver not connected to page", error_code="driver_not_connected")
        return self._session

    @property
    def target_manager(self) -> TargetManager:
        if self._target_manager is None:
            raise GatherError("Driver not connected to page", error_code="driver_not_connected")
        return self._target_manager

    async def connect(self) -> None:
        """Open the root session and start tracking targets. No-op when connected."""
        if self._session is not None:
            return

        transport = self._transport
        if transport is None:
            transport = await PlaywrightTransport.create(self.page)

        self._session = ProtocolSession(transport, default_timeout_ms=self.protocol_timeout_ms)
        self._target_manager = TargetManager(self._session)
        await self._target_manager.enable()
        logger.info("Driver connected")

    async def url(self) -> str:
        """Current URL of the page."""
        if self.page is not None:
            return self.page.url
        return await self.evaluate("location.href")

    async def evaluate(self, expression: str, timeout_ms: Optional[float] = None) -> Any:
        """Evaluate a JavaScript expression in the page and return its value.

        Raises:
            GatherError: If the expression threw
            ProtocolTimeoutError: If the page did not answer in time
        """
        session = self.default_session
        if timeout_ms is not None:
            session.set_next_protocol_timeout(timeout_ms)

        response = await session.send_command("Runtime.evaluate", {
            "expression": expression,
            "returnByValue": True,
            "awaitPromise": True,
        })

        exception = response.get("exceptionDetails")
        if exception:
            description = exception.get("exception", {}).get("description") or exception.get("text")
            raise GatherError(
                f"Evaluation failed: {description}",
                error_code="evaluation_failed",
                details={"expression": expression}
            )

        return response.get("result", {}).get("value")

    async def disconnect(self) -> None:
        """Stop tracking targets and dispose of the root session."""
        if self._session is None:
            return

        await self._target_manager.disable()
        await self._session.dispose()
        self._session = None
        self._target_manager = None
        logger.info("Driver disconnected")
