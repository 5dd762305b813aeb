"""Protocol session: command/response correlation and event subscription.

A ProtocolSession wraps one transport. It applies a timeout to every
command, fans named events out to subscribers, and feeds every event to
catch-all listeners.
"""

import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..lib.errors import ProtocolTimeoutError
from ..models.protocol import ProtocolMessage
from .transport import CDPTransport

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_TIMEOUT_MS = 30 * 1000

EventListener = Callable[..., Any]
ProtocolMessageListener = Callable[[ProtocolMessage], Any]


class ProtocolSession:
    """One logical DevTools protocol connection."""

    def __init__(
        self,
        transport: CDPTransport,
        default_timeout_ms: float = DEFAULT_PROTOCOL_TIMEOUT_MS,
        method_timeouts: Optional[Dict[str, float]] = None
    ):
        """Initialize the session.

        Args:
            transport: Transport that carries the traffic
            default_timeout_ms: Timeout for commands without a specific one
            method_timeouts: Per-method timeouts in milliseconds
        """
        self.transport = transport
        self.default_timeout_ms = default_timeout_ms
        self._method_timeouts: Dict[str, float] = dict(method_timeouts or {})
        self._next_timeout_ms: Optional[float] = None

        self._listeners: Dict[str, List[EventListener]] = {}
        self._once_wrappers: Dict[Tuple[str, EventListener], EventListener] = {}
        self._message_listeners: List[ProtocolMessageListener] = []
        self._pending_tasks = set()
        self._disposed = False

        self.transport.set_event_handler(self._dispatch)

    @property
    def session_id(self) -> Optional[str]:
        return self.transport.session_id

    @property
    def disposed(self) -> bool:
        return self._disposed

    # Timeouts

    def has_next_protocol_timeout(self) -> bool:
        return self._next_timeout_ms is not None

    def get_next_protocol_timeout(self) -> float:
        if self._next_timeout_ms is not None:
            return self._next_timeout_ms
        return self.default_timeout_ms

    def set_next_protocol_timeout(self, timeout_ms: float) -> None:
        """Override the timeout of the next command only.

        ``math.inf`` disables the timeout for that command.
        """
        self._next_timeout_ms = timeout_ms

    def set_method_timeout(self, method: str, timeout_ms: float) -> None:
        self._method_timeouts[method] = timeout_ms

    def _consume_timeout(self, method: str) -> float:
        if self._next_timeout_ms is not None:
            timeout_ms = self._next_timeout_ms
            self._next_timeout_ms = None
            return timeout_ms
        return self._method_timeouts.get(method, self.default_timeout_ms)

    # Commands

    async def send_command(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a protocol command and wait for its result.

        Args:
            method: Protocol method, e.g. ``Page.navigate``
            params: Command parameters

        Returns:
            The command's result payload

        Raises:
            ProtocolTimeoutError: If no response arrived within the timeout
        """
        timeout_ms = self._consume_timeout(method)
        logger.debug(f"method => browser: {method}")

        if timeout_ms is None or math.isinf(timeout_ms):
            return await self.transport.send(method, params or {})

        try:
            return await asyncio.wait_for(
                self.transport.send(method, params or {}),
                timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            logger.warning(f"Protocol command {method} timed out after {timeout_ms}ms")
            raise ProtocolTimeoutError(method, timeout_ms) from None

    # Events

    def on(self, event: str, listener: EventListener) -> None:
        """Subscribe to a named protocol event.

        Registering the same listener twice has no effect.
        """
        listeners = self._listeners.setdefault(event, [])
        if listener in listeners:
            return
        listeners.append(listener)
        self.transport.watch(event)

    def once(self, event: str, listener: EventListener) -> None:
        """Subscribe to the next occurrence of a named event only."""
        key = (event, listener)
        if key in self._once_wrappers:
            return

        def wrapper(*args):
            self.off(event, listener)
            return listener(*args)

        self._once_wrappers[key] = wrapper
        self.on(event, wrapper)

    def off(self, event: str, listener: EventListener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return

        wrapper = self._once_wrappers.pop((event, listener), None)
        target = wrapper if wrapper is not None else listener
        if target in listeners:
            listeners.remove(target)
        if not listeners:
            del self._listeners[event]

    def add_protocol_message_listener(self, listener: ProtocolMessageListener) -> None:
        """Receive every event this session sees as a ProtocolMessage."""
        if listener not in self._message_listeners:
            self._message_listeners.append(listener)

    def remove_protocol_message_listener(self, listener: ProtocolMessageListener) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is None:
            return sum(len(listeners) for listeners in self._listeners.values())
        return len(self._listeners.get(event, []))

    def _dispatch(self, method: str, params: Dict[str, Any]) -> None:
        for listener in list(self._listeners.get(method, [])):
            self._invoke(listener, method, params)

        if self._message_listeners:
            message = ProtocolMessage(method=method, params=params, session_id=self.session_id)
            for listener in list(self._message_listeners):
                self._invoke(listener, method, message)

    def _invoke(self, listener: Callable, method: str, *args: Any) -> None:
        try:
            result = listener(*args)
        except Exception as e:
            logger.error(f"Listener for {method} failed: {e}", exc_info=True)
            return

        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending_tasks.add(task)
            task.add_done_callback(self._on_listener_task_done)

    def _on_listener_task_done(self, task: asyncio.Future) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Async protocol listener failed: {error}")

    async def dispose(self) -> None:
        """Drop every listener and detach the transport."""
        if self._disposed:
            return
        self._disposed = True

        self._listeners.clear()
        self._once_wrappers.clear()
        self._message_listeners.clear()
        self.transport.set_event_handler(None)

        try:
            await self.transport.detach()
        except Exception as e:
            logger.debug(f"Error detaching protocol session: {e}")
