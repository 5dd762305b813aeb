"""Pydantic models for gathered artifacts and network records.

This module defines the fixed base artifacts every run populates, the parsed
network request records derived from the DevTools log, and the bundle handed
to the audit stage.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from .config import GatherContext, Settings


class NetworkRequest(BaseModel):
    """One network request reconstructed from protocol events."""

    request_id: str = Field(description="Protocol request id (redirect hops get a suffix)")
    url: str = Field(default="", description="Request URL")
    document_url: str = Field(default="", description="URL of the document that issued the request")
    frame_id: Optional[str] = Field(default=None, description="Frame that issued the request")
    resource_type: Optional[str] = Field(default=None, description="Protocol resource type")
    mime_type: str = Field(default="", description="Response MIME type")
    status_code: int = Field(default=-1, description="HTTP status code, -1 until a response arrives")

    failed: bool = Field(default=False, description="Whether loading failed")
    finished: bool = Field(default=False, description="Whether loading finished or failed")
    localized_fail_description: str = Field(default="", description="Browser failure reason")

    redirect_source_id: Optional[str] = Field(default=None)
    redirect_destination: Optional["NetworkRequest"] = Field(default=None)

    start_time: Optional[float] = Field(default=None, description="Monotonic seconds")
    end_time: Optional[float] = Field(default=None, description="Monotonic seconds")

    @property
    def host(self) -> str:
        """Extract host from URL."""
        return urlparse(self.url).netloc

    @property
    def is_document(self) -> bool:
        return self.resource_type == "Document"

    @property
    def duration_ms(self) -> Optional[float]:
        """Request duration in milliseconds."""
        if self.start_time is not None and self.end_time is not None:
            return (self.end_time - self.start_time) * 1000
        return None

    def __repr__(self) -> str:
        return f"NetworkRequest(id={self.request_id}, url={self.url}, status={self.status_code})"


NetworkRequest.model_rebuild()


class URLArtifact(BaseModel):
    """The URLs a navigation passed through.

    Required fields start empty and are set exactly once, when the navigate
    phase finishes.
    """

    initial_url: str = ""
    requested_url: str = ""
    main_document_url: str = ""
    final_url: str = ""

    @property
    def is_complete(self) -> bool:
        return all([self.initial_url, self.requested_url, self.main_document_url, self.final_url])


class TimingEntry(BaseModel):
    """A named duration measured while gathering."""

    name: str
    start_time: float
    duration_ms: float


class BaseArtifacts(BaseModel):
    """Fields every run populates regardless of configured collectors."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    fetch_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    settings: Settings
    gather_context: GatherContext
    url: URLArtifact = Field(default_factory=URLArtifact)

    host_user_agent: str = ""
    host_product: str = ""
    host_form_factor: str = ""
    benchmark_index: Optional[float] = None

    run_warnings: List[str] = Field(default_factory=list)
    page_load_error: Optional[Any] = Field(
        default=None,
        description="NavigationError that ended the run, if any"
    )
    timing: List[TimingEntry] = Field(default_factory=list)


class ArtifactBundle(BaseArtifacts):
    """Base artifacts plus every collected artifact, handed to the audit stage."""

    artifacts: Dict[str, Any] = Field(
        default_factory=dict,
        description="Artifact id -> collected value or CollectorError"
    )
    devtools_logs: Dict[str, List[Dict[str, Any]]] = Field(
        default_factory=dict,
        description="Diagnostic DevTools logs retained for failed navigations"
    )
    traces: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Diagnostic traces retained for failed navigations"
    )

    def get(self, artifact_id: str, default: Any = None) -> Any:
        return self.artifacts.get(artifact_id, default)

    def __getitem__(self, artifact_id: str) -> Any:
        return self.artifacts[artifact_id]

    def __contains__(self, artifact_id: str) -> bool:
        return artifact_id in self.artifacts


class GatherResult(BaseModel):
    """Output of a gather run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    artifacts: ArtifactBundle
    config_warnings: List[str] = Field(default_factory=list)

    @property
    def error(self) -> Optional[Any]:
        """Top-level page-load error, set only when a fatal navigation failed."""
        return self.artifacts.page_load_error

    @property
    def warnings(self) -> List[str]:
        return self.config_warnings + self.artifacts.run_warnings
