"""Discovery of, and attachment to, a page's sub-targets.

The TargetManager auto-attaches to out-of-process iframes, resumes targets
paused waiting for a debugger, forgets targets once they detach, and
re-emits every protocol event from every attached session as one
``protocolevent`` feed.
"""

import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from ..models.protocol import ProtocolMessage, TargetInfo
from .session import ProtocolSession
from .transport import CDPTransport

logger = logging.getLogger(__name__)

SUPPORTED_TARGET_TYPES = frozenset({"page", "iframe"})

PROTOCOL_EVENT = "protocolevent"

_TARGET_CLOSED_PATTERN = re.compile(r"Target.*closed", re.IGNORECASE)

AUTO_ATTACH_PARAMS = {
    "autoAttach": True,
    "flatten": True,
    "waitForDebuggerOnStart": True,
}


def is_target_closed_error(error: BaseException) -> bool:
    """Whether an error only says the target went away mid-command."""
    return bool(_TARGET_CLOSED_PATTERN.search(str(error)))


class AttachedTarget:
    """A live target and the session attached to it."""

    def __init__(self, target: TargetInfo, session: ProtocolSession):
        self.target = target
        self.session = session
        self.message_listener: Optional[Callable] = None


class TargetManager:
    """Tracks every page and iframe target reachable from the root session."""

    def __init__(self, root_session: ProtocolSession):
        """Initialize target manager.

        Args:
            root_session: Session attached to the top-level page
        """
        self.root_session = root_session
        self._enabled = False
        self._targets: Dict[str, AttachedTarget] = {}
        self._event_listeners: Dict[str, List[Callable]] = {}
        self._target_attached_listeners: List[Callable[[TargetInfo, ProtocolSession], Any]] = []
        self._pending_tasks = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def targets(self) -> List[TargetInfo]:
        """Live targets, in attach order."""
        return [attached.target for attached in self._targets.values()]

    async def enable(self) -> None:
        """Start tracking targets. Calling it again is a no-op."""
        if self._enabled:
            return
        self._enabled = True
        self._targets = {}

        self.root_session.on("Page.frameNavigated", self._on_frame_navigated)
        self.root_session.transport.add_session_attached_listener(self._on_session_attached)
        self.root_session.transport.add_session_detached_listener(self._on_session_detached)

        await self.root_session.send_command("Page.enable")
        await self._attach(self.root_session)
        logger.debug(f"Target manager enabled with {len(self._targets)} target(s)")

    async def disable(self) -> None:
        """Stop tracking targets and remove every listener this manager installed."""
        self.root_session.off("Page.frameNavigated", self._on_frame_navigated)
        self.root_session.off("Target.detachedFromTarget", self._on_target_detached)
        self.root_session.transport.remove_session_attached_listener(self._on_session_attached)
        self.root_session.transport.remove_session_detached_listener(self._on_session_detached)

        for task in list(self._pending_tasks):
            task.cancel()

        for attached in list(self._targets.values()):
            if attached.message_listener is not None:
                attached.session.remove_protocol_message_listener(attached.message_listener)
            if attached.session is not self.root_session:
                await attached.session.dispose()

        self._targets = {}
        self._enabled = False

    async def wait_for_pending(self) -> None:
        """Wait until scheduled attach, detach and auto-attach work has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    # Listener management

    def on(self, event: str, listener: Callable) -> None:
        listeners = self._event_listeners.setdefault(event, [])
        if listener not in listeners:
            listeners.append(listener)

    def off(self, event: str, listener: Callable) -> None:
        listeners = self._event_listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def add_target_attached_listener(self, listener: Callable[[TargetInfo, ProtocolSession], Any]) -> None:
        if listener not in self._target_attached_listeners:
            self._target_attached_listeners.append(listener)

    def remove_target_attached_listener(self, listener: Callable[[TargetInfo, ProtocolSession], Any]) -> None:
        if listener in self._target_attached_listeners:
            self._target_attached_listeners.remove(listener)

    def _emit(self, event: str, payload: Any) -> None:
        for listener in list(self._event_listeners.get(event, [])):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)

    # Attachment

    async def _attach(self, session: ProtocolSession) -> None:
        """Attach to the target behind ``session`` and auto-attach to its children."""
        try:
            response = await session.send_command("Target.getTargetInfo")
            target = TargetInfo.from_protocol(response.get("targetInfo", {}))

            if target.type not in SUPPORTED_TARGET_TYPES:
                logger.debug(f"Ignoring target {target.target_id} of type {target.type}")
                return

            if target.target_id in self._targets:
                return

            attached = AttachedTarget(target, session)
            attached.message_listener = self._make_message_listener(session)
            session.add_protocol_message_listener(attached.message_listener)
            session.on("Target.detachedFromTarget", self._on_target_detached)
            self._targets[target.target_id] = attached

            for listener in list(self._target_attached_listeners):
                result = listener(target, session)
                if asyncio.iscoroutine(result):
                    await result

            await session.send_command("Target.setAutoAttach", dict(AUTO_ATTACH_PARAMS))
            target.attached = True
            logger.debug(f"Attached to {target.type} target {target.target_id} ({target.url})")

        except Exception as e:
            if is_target_closed_error(e):
                logger.debug(f"Target closed while attaching: {e}")
                return
            raise

        finally:
            try:
                await session.send_command("Runtime.runIfWaitingForDebugger")
            except Exception as e:
                logger.debug(f"Could not resume target: {e}")

    def _make_message_listener(self, session: ProtocolSession) -> Callable[[ProtocolMessage], None]:
        def on_protocol_message(message: ProtocolMessage) -> None:
            if message.session_id is None and session.session_id is not None:
                message = message.model_copy(update={"session_id": session.session_id})
            self._emit(PROTOCOL_EVENT, message)

        return on_protocol_message

    def _schedule(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Future) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Target manager task failed: {error}")

    def _on_session_attached(self, transport: CDPTransport) -> None:
        session = ProtocolSession(transport, default_timeout_ms=self.root_session.default_timeout_ms)
        self._schedule(self._attach_child(session))

    async def _attach_child(self, session: ProtocolSession) -> None:
        try:
            await self._attach(session)
        except Exception as e:
            logger.error(f"Failed to attach to child target: {e}")

    # Detachment

    def _on_target_detached(self, params: Dict[str, Any]) -> None:
        """Forget the target whose session went away.

        Matched by session id when the event carries one: a paused session
        the transport released shares its target id with the frame session
        that replaced it.
        """
        session_id = params.get("sessionId")
        target_id = params.get("targetId")
        for key, attached in list(self._targets.items()):
            if attached.session is self.root_session:
                continue
            if session_id:
                matches = attached.session.session_id == session_id
            else:
                matches = key == target_id
            if matches:
                self._remove_target(key)

    def _on_session_detached(self, transport: CDPTransport) -> None:
        for key, attached in list(self._targets.items()):
            if attached.session is self.root_session:
                continue
            if attached.session.transport is transport:
                self._remove_target(key)

    def _remove_target(self, target_id: str) -> None:
        attached = self._targets.pop(target_id, None)
        if attached is None:
            return
        if attached.message_listener is not None:
            attached.session.remove_protocol_message_listener(attached.message_listener)
        logger.debug(f"Detached from {attached.target.type} target {target_id}")
        self._schedule(attached.session.dispose())

    def _on_frame_navigated(self, params: Dict[str, Any]) -> None:
        # Child frames are handled by their own sessions
        if params.get("frame", {}).get("parentId"):
            return
        if not self._enabled:
            return
        self._schedule(self._reenable_auto_attach())

    async def _reenable_auto_attach(self) -> None:
        try:
            await self.root_session.send_command("Target.setAutoAttach", dict(AUTO_ATTACH_PARAMS))
        except Exception as e:
            if is_target_closed_error(e):
                logger.debug(f"Target closed while re-enabling auto-attach: {e}")
                return
            raise
