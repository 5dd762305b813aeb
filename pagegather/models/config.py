"""Pydantic models for resolved configuration.

These models are the output of the config resolver. They are frozen: once a
run's configuration is resolved nothing downstream may mutate it.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GatherMode(str, Enum):
    """How a run observes the page."""
    NAVIGATION = "navigation"   # Full page load
    TIMESPAN = "timespan"       # Observe an interval of user interaction
    SNAPSHOT = "snapshot"       # Single point-in-time capture


class LoadFailureMode(str, Enum):
    """What a page-load error means for the rest of the run."""
    FATAL = "fatal"
    WARN = "warn"
    IGNORE = "ignore"


class ThrottlingMethod(str, Enum):
    """How network and CPU throttling are applied."""
    SIMULATE = "simulate"
    DEVTOOLS = "devtools"
    PROVIDED = "provided"


class FormFactor(str, Enum):
    """Device class the run emulates."""
    MOBILE = "mobile"
    DESKTOP = "desktop"


class ThrottlingSettings(BaseModel):
    """Network and CPU throttling parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rtt_ms: float = Field(default=150, ge=0, description="Simulated round trip time")
    throughput_kbps: float = Field(default=1.6 * 1024, ge=0, description="Simulated throughput")
    request_latency_ms: float = Field(default=150 * 3.75, ge=0, description="Applied request latency")
    download_throughput_kbps: float = Field(default=1.6 * 1024 * 0.9, ge=0)
    upload_throughput_kbps: float = Field(default=750 * 0.9, ge=0)
    cpu_slowdown_multiplier: float = Field(default=4, ge=1, description="CPU slowdown factor")


class Settings(BaseModel):
    """Resolved run settings. Immutable once produced."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Navigation ceilings
    max_wait_for_fcp: int = Field(
        default=30 * 1000,
        ge=1,
        description="Maximum time in ms to wait for first contentful paint"
    )
    max_wait_for_load: int = Field(
        default=45 * 1000,
        ge=1,
        description="Maximum time in ms to wait for the page to finish loading"
    )

    # Throttling and emulation
    throttling_method: ThrottlingMethod = Field(default=ThrottlingMethod.SIMULATE)
    throttling: ThrottlingSettings = Field(default_factory=ThrottlingSettings)
    form_factor: FormFactor = Field(default=FormFactor.MOBILE)
    emulated_user_agent: Optional[str] = Field(
        default=None,
        description="User agent override sent with every request"
    )

    # Run behaviour
    gather_mode: Optional[GatherMode] = Field(default=None)
    locale: str = Field(default="en-US")
    disable_storage_reset: bool = Field(default=False)
    skip_about_blank: bool = Field(default=False)
    blank_page: str = Field(default="about:blank")
    debug_navigation: bool = Field(default=False)
    blocked_url_patterns: Tuple[str, ...] = Field(default_factory=tuple)
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    protocol_timeout_ms: int = Field(
        default=30 * 1000,
        ge=1,
        description="Default timeout in ms for each protocol command"
    )
    channel: str = Field(default="python")

    # Filters consumed by the audit stage
    only_audits: Optional[Tuple[str, ...]] = None
    only_categories: Optional[Tuple[str, ...]] = None
    skip_audits: Optional[Tuple[str, ...]] = None

    @field_validator('locale')
    @classmethod
    def validate_locale(cls, v):
        if not v or not v.replace('-', '').replace('_', '').isalnum():
            raise ValueError(f"Invalid locale: {v!r}")
        return v


class CollectorMeta(BaseModel):
    """Capability declaration every collector exposes."""

    model_config = ConfigDict(frozen=True)

    supported_modes: Tuple[GatherMode, ...] = Field(default_factory=tuple)
    dependencies: Optional[Dict[str, str]] = Field(
        default=None,
        description="Dependency name -> symbol of the collector that produces it"
    )
    symbol: Optional[str] = Field(
        default=None,
        description="Identity other collectors use to depend on this one"
    )


class CollectorDefinition(BaseModel):
    """A loaded collector together with the reference it was loaded from."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: Optional[str] = None
    instance: Any

    @property
    def meta(self) -> CollectorMeta:
        meta = getattr(self.instance, "meta", None)
        if meta is None or isinstance(meta, CollectorMeta):
            return meta
        return CollectorMeta.model_validate(meta)

    @property
    def name(self) -> str:
        return type(self.instance).__name__


class DependencyReference(BaseModel):
    """Points a resolved dependency at the artifact that satisfies it."""

    model_config = ConfigDict(frozen=True)

    id: str


class ArtifactDefinition(BaseModel):
    """One artifact to collect and the collector that produces it."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    collector: CollectorDefinition
    dependencies: Optional[Dict[str, DependencyReference]] = None


class NavigationDefinition(BaseModel):
    """One page-load cycle and the artifacts gathered during it."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = "default"
    artifacts: Tuple[ArtifactDefinition, ...] = Field(default_factory=tuple)
    load_failure_mode: LoadFailureMode = LoadFailureMode.FATAL
    disable_throttling: bool = False
    disable_storage_reset: bool = False
    pause_after_fcp_ms: int = Field(default=0, ge=0)
    pause_after_load_ms: int = Field(default=0, ge=0)
    network_quiet_threshold_ms: int = Field(default=0, ge=0)
    cpu_quiet_threshold_ms: int = Field(default=0, ge=0)
    blocked_url_patterns: Tuple[str, ...] = Field(default_factory=tuple)
    blank_page: str = "about:blank"

    @property
    def artifact_ids(self) -> List[str]:
        return [artifact.id for artifact in self.artifacts]


class AuditDefinition(BaseModel):
    """Normalized audit reference handed through to the audit stage."""

    model_config = ConfigDict(frozen=True)

    path: str
    options: Dict[str, Any] = Field(default_factory=dict)


class ResolvedConfig(BaseModel):
    """Fully resolved, dependency-checked collection plan."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    artifacts: Optional[Tuple[ArtifactDefinition, ...]] = None
    navigations: Optional[Tuple[NavigationDefinition, ...]] = None
    audits: Optional[Tuple[AuditDefinition, ...]] = None
    categories: Optional[Dict[str, Any]] = None
    groups: Optional[Dict[str, Any]] = None
    settings: Settings = Field(default_factory=Settings)


class GatherContext(BaseModel):
    """Per-run gather mode."""

    model_config = ConfigDict(frozen=True)

    gather_mode: GatherMode
