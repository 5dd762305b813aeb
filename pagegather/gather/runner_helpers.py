"""Running collector phase hooks and gathering their results.

Each (phase, artifact id) pair gets one future. A phase's future for an
artifact is chained to the same artifact's future from the previous phase,
so a collector that failed to start instrumenting never produces an
artifact. Collectors run in declaration order, one at a time.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from ..computed.cache import ComputedArtifactCache
from ..lib.errors import CollectorError, GatherError
from ..models.artifacts import BaseArtifacts
from ..models.config import ArtifactDefinition, GatherMode, Settings
from .base_collector import CollectorContext

logger = logging.getLogger(__name__)


class Phase:
    """Collector phase hooks, in the order the runner calls them."""
    START_INSTRUMENTATION = "start_instrumentation"
    START_SENSITIVE_INSTRUMENTATION = "start_sensitive_instrumentation"
    STOP_SENSITIVE_INSTRUMENTATION = "stop_sensitive_instrumentation"
    STOP_INSTRUMENTATION = "stop_instrumentation"
    GET_ARTIFACT = "get_artifact"


PHASES = (
    Phase.START_INSTRUMENTATION,
    Phase.START_SENSITIVE_INSTRUMENTATION,
    Phase.STOP_SENSITIVE_INSTRUMENTATION,
    Phase.STOP_INSTRUMENTATION,
    Phase.GET_ARTIFACT,
)

PRIOR_PHASE = {
    Phase.START_SENSITIVE_INSTRUMENTATION: Phase.START_INSTRUMENTATION,
    Phase.STOP_SENSITIVE_INSTRUMENTATION: Phase.START_SENSITIVE_INSTRUMENTATION,
    Phase.STOP_INSTRUMENTATION: Phase.STOP_SENSITIVE_INSTRUMENTATION,
    Phase.GET_ARTIFACT: Phase.STOP_INSTRUMENTATION,
}

ArtifactState = Dict[str, Dict[str, asyncio.Future]]


def get_empty_artifact_state() -> ArtifactState:
    return {phase: {} for phase in PHASES}


class PhaseState:
    """Everything ``collect_phase_artifacts`` needs besides the phase name."""

    def __init__(
        self,
        driver,
        gather_mode: GatherMode,
        artifact_definitions: Iterable[ArtifactDefinition],
        artifact_state: ArtifactState,
        url: str,
        computed_cache: ComputedArtifactCache,
        base_artifacts: BaseArtifacts,
        settings: Settings
    ):
        self.driver = driver
        self.gather_mode = gather_mode
        self.artifact_definitions = list(artifact_definitions)
        self.artifact_state = artifact_state
        self.url = url
        self.computed_cache = computed_cache
        self.base_artifacts = base_artifacts
        self.settings = settings

    def context(self, dependencies: Optional[Dict[str, Any]] = None) -> CollectorContext:
        return CollectorContext(
            driver=self.driver,
            url=self.url,
            gather_mode=self.gather_mode,
            computed_cache=self.computed_cache,
            base_artifacts=self.base_artifacts,
            settings=self.settings,
            dependencies=dependencies,
        )


async def collect_artifact_dependencies(
    artifact: ArtifactDefinition,
    artifacts_by_id: Dict[str, asyncio.Future]
) -> Dict[str, Any]:
    """Await the artifacts ``artifact`` depends on.

    Raises:
        GatherError: If a dependency did not run or failed
    """
    if not artifact.dependencies:
        return {}

    dependencies = {}
    for name, reference in artifact.dependencies.items():
        future = artifacts_by_id.get(reference.id)
        if future is None:
            raise GatherError(
                f"\"{reference.id}\" did not run",
                error_code="dependency_failed",
                details={"artifact_id": artifact.id, "dependency_id": reference.id}
            )
        try:
            dependencies[name] = await future
        except Exception as e:
            cause = e.cause if isinstance(e, CollectorError) else e
            raise GatherError(
                f"Dependency \"{reference.id}\" failed with exception: {cause}",
                error_code="dependency_failed",
                details={"artifact_id": artifact.id, "dependency_id": reference.id}
            ) from e
    return dependencies


async def _run_phase(
    phase: str,
    artifact: ArtifactDefinition,
    state: PhaseState,
    prior: Optional[asyncio.Future]
) -> Any:
    if prior is not None:
        await prior

    try:
        dependencies = {}
        if phase == Phase.GET_ARTIFACT:
            dependencies = await collect_artifact_dependencies(artifact, state.artifact_state[Phase.GET_ARTIFACT])

        hook = getattr(artifact.collector.instance, phase, None)
        if hook is None:
            return None
        return await hook(state.context(dependencies))

    except Exception as e:
        logger.warning(f"{artifact.id} failed during {phase}: {e}")
        raise CollectorError(artifact.id, phase, e) from e


async def collect_phase_artifacts(
    phase: str,
    state: PhaseState,
    artifact_definitions: Optional[Iterable[ArtifactDefinition]] = None
) -> None:
    """Run ``phase`` for each artifact, in declaration order.

    Failures are kept in the artifact's future, never raised here.

    Args:
        phase: One of PHASES
        state: Shared phase state of the navigation
        artifact_definitions: Subset to run, defaults to every artifact of ``state``
    """
    definitions = state.artifact_definitions if artifact_definitions is None else list(artifact_definitions)
    prior_phase = PRIOR_PHASE.get(phase)
    prior_futures = state.artifact_state[prior_phase] if prior_phase else {}
    phase_futures = state.artifact_state[phase]

    for artifact in definitions:
        if phase == Phase.GET_ARTIFACT and artifact.id in phase_futures:
            continue

        logger.debug(f"Running {phase} for {artifact.id} ({artifact.collector.name})")
        future = asyncio.ensure_future(_run_phase(phase, artifact, state, prior_futures.get(artifact.id)))
        phase_futures[artifact.id] = future
        await asyncio.wait([future])
        # Failures surface later through await_artifacts
        if not future.cancelled():
            future.exception()


async def await_artifacts(artifact_state: ArtifactState) -> Dict[str, Any]:
    """Final artifact values by id. A failed collector's value is its CollectorError."""
    artifacts: Dict[str, Any] = {}
    for artifact_id, future in artifact_state[Phase.GET_ARTIFACT].items():
        try:
            value = await future
        except CollectorError as e:
            value = e
        except Exception as e:
            value = CollectorError(artifact_id, Phase.GET_ARTIFACT, e)
        if value is not None:
            artifacts[artifact_id] = value
    return artifacts
