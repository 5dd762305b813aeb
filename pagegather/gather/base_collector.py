"""Collector contract.

A collector declares a ``meta`` (supported gather modes, dependencies and an
optional symbol other collectors can depend on) and implements any of the
phase hooks. The runner calls the hooks in a fixed order for every
navigation and passes each one a CollectorContext.
"""

from typing import Any, Dict, Optional

from ..computed.cache import ComputedArtifactCache
from ..models.artifacts import BaseArtifacts
from ..models.config import CollectorMeta, GatherMode, Settings


class CollectorContext:
    """What a collector can see during one phase."""

    def __init__(
        self,
        driver,
        url: str,
        gather_mode: GatherMode,
        computed_cache: ComputedArtifactCache,
        base_artifacts: BaseArtifacts,
        settings: Settings,
        dependencies: Optional[Dict[str, Any]] = None
    ):
        self.driver = driver
        self.url = url
        self.gather_mode = gather_mode
        self.computed_cache = computed_cache
        self.base_artifacts = base_artifacts
        self.settings = settings
        self.dependencies = dependencies or {}

    @property
    def session(self):
        """Default protocol session of the driver."""
        return self.driver.default_session


class BaseCollector:
    """Base class for collectors. Every phase hook is a no-op by default."""

    meta = CollectorMeta(supported_modes=tuple(GatherMode))

    async def start_instrumentation(self, context: CollectorContext) -> None:
        pass

    async def start_sensitive_instrumentation(self, context: CollectorContext) -> None:
        pass

    async def stop_sensitive_instrumentation(self, context: CollectorContext) -> None:
        pass

    async def stop_instrumentation(self, context: CollectorContext) -> None:
        pass

    async def get_artifact(self, context: CollectorContext) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not implement get_artifact")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
