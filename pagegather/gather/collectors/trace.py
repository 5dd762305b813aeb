"""Collector recording a performance trace of the page load."""

import asyncio
import logging
from typing import Any, Dict, List

from ...config.constants import TRACE_SYMBOL
from ...models.config import CollectorMeta, GatherMode
from ..base_collector import BaseCollector, CollectorContext

logger = logging.getLogger(__name__)

DEFAULT_TRACE_CATEGORIES = (
    "-*",
    "toplevel",
    "v8.execute",
    "blink.console",
    "blink.user_timing",
    "benchmark",
    "loading",
    "latencyInfo",
    "devtools.timeline",
    "disabled-by-default-devtools.timeline",
    "disabled-by-default-devtools.timeline.frame",
    "disabled-by-default-devtools.timeline.stack",
    "disabled-by-default-devtools.screenshot",
)

TRACING_COMPLETE_TIMEOUT_S = 30


class Trace(BaseCollector):
    """Trace events recorded between start and stop of instrumentation."""

    meta = CollectorMeta(
        symbol=TRACE_SYMBOL,
        supported_modes=(GatherMode.TIMESPAN, GatherMode.NAVIGATION),
    )

    def __init__(self):
        self._trace: Dict[str, Any] = {"trace_events": []}

    @staticmethod
    def get_default_trace_categories() -> List[str]:
        return list(DEFAULT_TRACE_CATEGORIES)

    async def start_sensitive_instrumentation(self, context: CollectorContext) -> None:
        self._trace = {"trace_events": []}
        await context.session.send_command("Page.enable")
        await context.session.send_command("Tracing.start", {
            "categories": ",".join(self.get_default_trace_categories()),
            "options": "sampling-frequency=10000",
            "transferMode": "ReportEvents",
        })

    async def stop_sensitive_instrumentation(self, context: CollectorContext) -> None:
        session = context.session
        events: List[Dict[str, Any]] = []
        complete = asyncio.get_running_loop().create_future()

        def on_data_collected(params: Dict[str, Any]) -> None:
            events.extend(params.get("value", []))

        def on_tracing_complete(params: Dict[str, Any]) -> None:
            if not complete.done():
                complete.set_result(True)

        session.on("Tracing.dataCollected", on_data_collected)
        session.on("Tracing.tracingComplete", on_tracing_complete)
        try:
            await session.send_command("Tracing.end")
            await asyncio.wait_for(complete, TRACING_COMPLETE_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for the trace to complete; trace may be partial")
        finally:
            session.off("Tracing.dataCollected", on_data_collected)
            session.off("Tracing.tracingComplete", on_tracing_complete)

        self._trace = {"trace_events": events}
        logger.debug(f"Collected {len(events)} trace events")

    async def get_artifact(self, context: CollectorContext) -> Dict[str, Any]:
        return self._trace
