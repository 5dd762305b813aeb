"""Shared test fixtures and configuration for pagegather tests."""

import asyncio
import inspect
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pagegather.config.constants import ENVIRONMENT_ENV_VAR, PROTOCOL_TIMEOUT_ENV_VAR
from pagegather.gather.base_collector import BaseCollector
from pagegather.gather.driver import Driver
from pagegather.models.config import CollectorMeta, GatherMode
from pagegather.protocol.session import ProtocolSession
from pagegather.protocol.transport import CDPTransport


DESKTOP_CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)


def hang(params: Optional[Dict[str, Any]] = None) -> asyncio.Future:
    """Response that never arrives."""
    return asyncio.get_running_loop().create_future()


class FakeTransport(CDPTransport):
    """In-memory transport that records commands and answers from a script.

    A scripted response is a payload dict, an exception instance to raise,
    or a callable taking the params and returning either (or an awaitable).
    """

    def __init__(self, session_id: Optional[str] = None, target_id: str = "page-1", target_type: str = "page"):
        super().__init__(session_id)
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.watched: List[str] = []
        self.detached = False
        self.current_url = "about:blank"
        self.benchmark_index = 1500
        self.responses: Dict[str, Any] = {
            "Target.getTargetInfo": {
                "targetInfo": {"targetId": target_id, "type": target_type, "url": "about:blank", "title": ""},
            },
            "Browser.getVersion": {"userAgent": DESKTOP_CHROME_UA, "product": "Chrome/120.0.6099.109"},
            "Runtime.evaluate": self._evaluate,
        }

    def respond(self, method: str, response: Any) -> None:
        self.responses[method] = response

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = params or {}
        self.calls.append((method, params))

        response = self.responses.get(method, {})
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, BaseException):
            raise response
        return response

    async def detach(self) -> None:
        self.detached = True

    def watch(self, method: str) -> None:
        self.watched.append(method)

    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]

    def params_for(self, method: str) -> List[Dict[str, Any]]:
        return [params for called, params in self.calls if called == method]

    def attach_child(self, child: "FakeTransport") -> None:
        self._notify_session_attached(child)

    def detach_child(self, child: "FakeTransport") -> None:
        self._notify_session_detached(child)

    def _evaluate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        expression = params.get("expression", "")
        if "location.href" in expression:
            value = self.current_url
        elif "iterations" in expression:
            value = self.benchmark_index
        else:
            value = 1
        return {"result": {"type": "object", "value": value}}


class PageLoadScript:
    """Makes Page.navigate on a FakeTransport replay the events of a page load.

    Unknown URLs load as a painted, loaded HTML page. ``about:`` URLs only
    navigate, without network traffic. Adding a URL more than once queues
    its behaviours: each load uses the next one and the last one repeats.
    """

    def __init__(self, transport: FakeTransport):
        self.transport = transport
        self.pages: Dict[str, List[Dict[str, Any]]] = {}
        self._request_count = 0
        transport.respond("Page.navigate", self._navigate)
        transport.respond("Tracing.end", self._end_tracing)

    def add_page(
        self,
        url: str,
        status: int = 200,
        mime_type: str = "text/html",
        paint: bool = True,
        load: bool = True,
        error_text: Optional[str] = None,
        redirect_to: Optional[str] = None
    ) -> None:
        self.pages.setdefault(url, []).append({
            "status": status,
            "mime_type": mime_type,
            "paint": paint,
            "load": load,
            "error_text": error_text,
            "redirect_to": redirect_to,
        })

    def _navigate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        url = params["url"]
        queued = self.pages.get(url)
        if queued:
            page = queued.pop(0) if len(queued) > 1 else queued[0]
        else:
            page = {
                "status": 200, "mime_type": "text/html", "paint": True, "load": True,
                "error_text": None, "redirect_to": None,
            }
        emit = self.transport.emit
        final_url = page["redirect_to"] or url

        if not url.startswith("about:"):
            self._request_count += 1
            request_id = f"doc-{self._request_count}"
            emit("Network.requestWillBeSent", {
                "requestId": request_id,
                "request": {"url": url},
                "documentURL": url,
                "frameId": "main",
                "type": "Document",
                "timestamp": 1.0,
            })
            if page["redirect_to"]:
                emit("Network.requestWillBeSent", {
                    "requestId": request_id,
                    "request": {"url": final_url},
                    "documentURL": final_url,
                    "frameId": "main",
                    "type": "Document",
                    "timestamp": 1.05,
                    "redirectResponse": {"url": url, "status": 301, "mimeType": "text/html"},
                })

            if page["error_text"]:
                emit("Network.loadingFailed", {
                    "requestId": request_id,
                    "errorText": page["error_text"],
                    "type": "Document",
                    "timestamp": 1.1,
                })
            else:
                emit("Network.responseReceived", {
                    "requestId": request_id,
                    "type": "Document",
                    "response": {"url": final_url, "status": page["status"], "mimeType": page["mime_type"]},
                })
                emit("Network.loadingFinished", {"requestId": request_id, "timestamp": 1.2})

        self.transport.current_url = final_url
        emit("Page.frameNavigated", {"frame": {"id": "main", "url": final_url}})
        if page["paint"]:
            emit("Page.lifecycleEvent", {"frameId": "main", "name": "firstContentfulPaint"})
        if page["load"]:
            emit("Page.loadEventFired", {"timestamp": 1.3})
        return {"frameId": "main", "loaderId": "loader-1"}

    def _end_tracing(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.transport.emit("Tracing.dataCollected", {
            "value": [{"name": "TracingStartedInBrowser", "ph": "I", "ts": 1000}],
        })
        self.transport.emit("Tracing.tracingComplete", {"dataLossOccurred": False})
        return {}


@pytest.fixture
def transport():
    """Scriptable fake DevTools transport."""
    return FakeTransport()


@pytest.fixture
def session(transport):
    """Protocol session over the fake transport with a short default timeout."""
    return ProtocolSession(transport, default_timeout_ms=1000)


@pytest.fixture
def page_load(transport):
    """Page-load script installed on the fake transport."""
    return PageLoadScript(transport)


@pytest.fixture
async def driver(transport):
    """Driver connected through the fake transport."""
    driver = Driver(transport=transport, protocol_timeout_ms=1000)
    await driver.connect()
    yield driver
    if driver.connected:
        await driver.disconnect()


# Collectors used by config and runner tests

class ProducerCollector(BaseCollector):
    """Produces a value other collectors depend on."""

    meta = CollectorMeta(supported_modes=tuple(GatherMode), symbol="producer")

    def __init__(self):
        self.phases: List[str] = []

    async def start_instrumentation(self, context):
        self.phases.append("start_instrumentation")

    async def stop_instrumentation(self, context):
        self.phases.append("stop_instrumentation")

    async def get_artifact(self, context):
        self.phases.append("get_artifact")
        return {"produced": context.url}


class ConsumerCollector(BaseCollector):
    """Depends on the producer's artifact."""

    meta = CollectorMeta(supported_modes=tuple(GatherMode), dependencies={"source": "producer"})

    async def get_artifact(self, context):
        return {"consumed": context.dependencies["source"]}


class NavigationOnlyCollector(BaseCollector):
    meta = CollectorMeta(supported_modes=(GatherMode.NAVIGATION,), symbol="navigation-only")

    async def get_artifact(self, context):
        return "navigation"


class SnapshotCollector(BaseCollector):
    meta = CollectorMeta(supported_modes=(GatherMode.SNAPSHOT,), symbol="snapshot-only")

    async def get_artifact(self, context):
        return "snapshot"


class FailingCollector(BaseCollector):
    """Fails while producing its artifact."""

    meta = CollectorMeta(supported_modes=tuple(GatherMode), symbol="failing")

    async def get_artifact(self, context):
        raise ValueError("collector exploded")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep PAGEGATHER_* variables of the host out of config resolution."""
    monkeypatch.delenv(ENVIRONMENT_ENV_VAR, raising=False)
    monkeypatch.delenv(PROTOCOL_TIMEOUT_ENV_VAR, raising=False)
