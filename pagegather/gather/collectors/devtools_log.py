"""Collector recording every protocol event the page emits."""

import logging
from typing import Any, Dict, List

from ...config.constants import DEVTOOLS_LOG_SYMBOL
from ...models.config import CollectorMeta, GatherMode
from ...models.protocol import ProtocolMessage
from ...protocol.target_manager import PROTOCOL_EVENT
from ..base_collector import BaseCollector, CollectorContext

logger = logging.getLogger(__name__)


class DevtoolsMessageLog:
    """Records protocol messages while active."""

    def __init__(self):
        self._messages: List[Dict[str, Any]] = []
        self._recording = False

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return list(self._messages)

    def reset(self) -> None:
        self._messages = []

    def begin_recording(self) -> None:
        self._recording = True

    def end_recording(self) -> None:
        self._recording = False

    def record(self, message: ProtocolMessage) -> None:
        if not self._recording:
            return
        entry: Dict[str, Any] = {"method": message.method, "params": message.params or {}}
        if message.session_id:
            entry["session_id"] = message.session_id
        self._messages.append(entry)


class DevtoolsLog(BaseCollector):
    """Every protocol event seen between start and stop of instrumentation."""

    meta = CollectorMeta(
        symbol=DEVTOOLS_LOG_SYMBOL,
        supported_modes=(GatherMode.TIMESPAN, GatherMode.NAVIGATION),
    )

    def __init__(self):
        self._message_log = DevtoolsMessageLog()

    def _on_protocol_message(self, message: ProtocolMessage) -> None:
        self._message_log.record(message)

    async def start_sensitive_instrumentation(self, context: CollectorContext) -> None:
        self._message_log.reset()
        self._message_log.begin_recording()
        context.driver.target_manager.on(PROTOCOL_EVENT, self._on_protocol_message)

        session = context.session
        await session.send_command("Page.enable")
        await session.send_command("Runtime.enable")
        await session.send_command("Network.enable")

    async def stop_sensitive_instrumentation(self, context: CollectorContext) -> None:
        self._message_log.end_recording()
        context.driver.target_manager.off(PROTOCOL_EVENT, self._on_protocol_message)
        logger.debug(f"Recorded {len(self._message_log.messages)} protocol messages")

    async def get_artifact(self, context: CollectorContext) -> List[Dict[str, Any]]:
        return self._message_log.messages
