"""Network records reconstructed from a DevTools log."""

import logging
from typing import Any, Dict, List

from ..models.artifacts import NetworkRequest
from .cache import ComputedArtifact

logger = logging.getLogger(__name__)

REDIRECT_SUFFIX = ":redirect"


class NetworkRecorder:
    """Builds NetworkRequest records from Network.* protocol events."""

    def __init__(self):
        self._records: List[NetworkRequest] = []
        self._by_id: Dict[str, NetworkRequest] = {}

    @property
    def records(self) -> List[NetworkRequest]:
        return list(self._records)

    def dispatch(self, method: str, params: Dict[str, Any]) -> None:
        handler = {
            "Network.requestWillBeSent": self._on_request_will_be_sent,
            "Network.responseReceived": self._on_response_received,
            "Network.loadingFinished": self._on_loading_finished,
            "Network.loadingFailed": self._on_loading_failed,
        }.get(method)
        if handler:
            handler(params)

    def _on_request_will_be_sent(self, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        if not request_id:
            return

        redirect_source = None
        redirect_response = params.get("redirectResponse")
        previous = self._by_id.get(request_id)
        if redirect_response and previous is not None:
            # The earlier hop keeps its data under a suffixed id
            self._apply_response(previous, redirect_response)
            previous.finished = True
            previous.end_time = params.get("timestamp")
            previous.request_id = previous.request_id + REDIRECT_SUFFIX
            self._by_id[previous.request_id] = previous
            redirect_source = previous

        request = params.get("request", {})
        record = NetworkRequest(
            request_id=request_id,
            url=request.get("url", ""),
            document_url=params.get("documentURL", ""),
            frame_id=params.get("frameId"),
            resource_type=params.get("type"),
            start_time=params.get("timestamp"),
        )

        if redirect_source is not None:
            record.redirect_source_id = redirect_source.request_id
            redirect_source.redirect_destination = record

        self._by_id[request_id] = record
        self._records.append(record)

    def _on_response_received(self, params: Dict[str, Any]) -> None:
        record = self._by_id.get(params.get("requestId"))
        if record is None:
            logger.debug(f"Response for unknown request {params.get('requestId')}")
            return
        if params.get("type"):
            record.resource_type = params["type"]
        self._apply_response(record, params.get("response", {}))

    def _on_loading_finished(self, params: Dict[str, Any]) -> None:
        record = self._by_id.get(params.get("requestId"))
        if record is None:
            return
        record.finished = True
        record.end_time = params.get("timestamp")

    def _on_loading_failed(self, params: Dict[str, Any]) -> None:
        record = self._by_id.get(params.get("requestId"))
        if record is None:
            return
        record.failed = True
        record.finished = True
        record.localized_fail_description = params.get("errorText", "")
        record.end_time = params.get("timestamp")
        if params.get("type"):
            record.resource_type = params["type"]

    @staticmethod
    def _apply_response(record: NetworkRequest, response: Dict[str, Any]) -> None:
        if response.get("url"):
            record.url = response["url"]
        record.status_code = int(response.get("status", record.status_code))
        record.mime_type = response.get("mimeType", record.mime_type)


class NetworkRecords(ComputedArtifact):
    """Network requests observed in a DevTools log, in request order."""

    name = "NetworkRecords"

    @classmethod
    async def compute(cls, devtools_log: List[Dict[str, Any]], context: Any) -> List[NetworkRequest]:
        recorder = NetworkRecorder()
        for entry in devtools_log:
            recorder.dispatch(entry.get("method", ""), entry.get("params") or {})
        return recorder.records
