"""Filtering a resolved config down to what a gather mode can run."""

import logging
from typing import Optional, Tuple

from ..models.config import ArtifactDefinition, GatherMode, NavigationDefinition, ResolvedConfig

logger = logging.getLogger(__name__)


def filter_artifacts_by_gather_mode(
    artifacts: Optional[Tuple[ArtifactDefinition, ...]],
    mode: GatherMode
) -> Optional[Tuple[ArtifactDefinition, ...]]:
    """Keep artifacts whose collector supports ``mode``.

    Artifacts depending on a dropped artifact are dropped as well.
    """
    if artifacts is None:
        return None

    mode = GatherMode(mode)
    kept = []
    kept_ids = set()
    for artifact in artifacts:
        if mode not in artifact.collector.meta.supported_modes:
            logger.debug(f"Artifact {artifact.id} does not support {mode.value} mode")
            continue

        missing = [
            dependency.id for dependency in (artifact.dependencies or {}).values()
            if dependency.id not in kept_ids
        ]
        if missing:
            logger.debug(f"Artifact {artifact.id} dropped, its dependencies {missing} are unavailable")
            continue

        kept.append(artifact)
        kept_ids.add(artifact.id)

    return tuple(kept)


def filter_navigations_by_available_artifacts(
    navigations: Optional[Tuple[NavigationDefinition, ...]],
    artifacts: Optional[Tuple[ArtifactDefinition, ...]]
) -> Optional[Tuple[NavigationDefinition, ...]]:
    """Drop unavailable artifacts from each navigation, then drop empty navigations."""
    if navigations is None:
        return None

    available_ids = {artifact.id for artifact in artifacts or ()}
    filtered = []
    for navigation in navigations:
        nav_artifacts = tuple(a for a in navigation.artifacts if a.id in available_ids)
        if not nav_artifacts:
            continue
        filtered.append(navigation.model_copy(update={'artifacts': nav_artifacts}))

    return tuple(filtered)


def filter_config_by_gather_mode(config: ResolvedConfig, mode: GatherMode) -> ResolvedConfig:
    """Filter a resolved config to what ``mode`` can run.

    Navigations only exist in navigation mode.
    """
    mode = GatherMode(mode)
    artifacts = filter_artifacts_by_gather_mode(config.artifacts, mode)

    if mode == GatherMode.NAVIGATION:
        navigations = filter_navigations_by_available_artifacts(config.navigations, artifacts)
    else:
        navigations = None

    return config.model_copy(update={'artifacts': artifacts, 'navigations': navigations})
