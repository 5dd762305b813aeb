"""Structural validation of resolved configs."""

import logging
from typing import Any, Dict, List, Sequence, Tuple

from ..lib.errors import ConfigurationError, DependencyError
from ..models.config import (
    CollectorDefinition,
    LoadFailureMode,
    NavigationDefinition,
    ResolvedConfig,
    Settings,
)
from .constants import GATHER_MODE_LEVELS, PLUGIN_NAME_PREFIXES

logger = logging.getLogger(__name__)


def _mode_level(collector: CollectorDefinition) -> int:
    modes = [getattr(mode, 'value', mode) for mode in collector.meta.supported_modes]
    return min(GATHER_MODE_LEVELS[mode] for mode in modes)


def is_valid_artifact_dependency(dependent: CollectorDefinition, dependency: CollectorDefinition) -> bool:
    """Check whether ``dependent`` may consume the artifact ``dependency`` produces.

    An artifact that can run in timespan mode needs its dependency to be
    available in timespan mode too; likewise for snapshot mode. An artifact
    that only runs in navigation mode can depend on anything.
    """
    dependent_level = _mode_level(dependent)
    dependency_level = _mode_level(dependency)

    if dependent_level == GATHER_MODE_LEVELS['timespan']:
        return dependency_level == GATHER_MODE_LEVELS['timespan']
    if dependent_level == GATHER_MODE_LEVELS['snapshot']:
        return dependency_level == GATHER_MODE_LEVELS['snapshot']
    return True


def throw_invalid_dependency_order(artifact_id: str, dependency_name: str) -> None:
    raise DependencyError(
        f'Dependency declared out of order, for artifact "{artifact_id}", missing "{dependency_name}"',
        artifact_id=artifact_id,
        dependency_name=dependency_name,
    )


def throw_invalid_artifact_dependency(artifact_id: str, dependency_name: str, dependency_id: str) -> None:
    raise DependencyError(
        f'Dependency "{dependency_name}" for artifact "{artifact_id}" is invalid: '
        f'"{dependency_id}" is not available in every gather mode "{artifact_id}" supports',
        artifact_id=artifact_id,
        dependency_name=dependency_name,
        dependency_id=dependency_id,
    )


def assert_valid_plugin_name(config_json: Dict[str, Any], plugin_name: str) -> None:
    """Raise if a plugin name lacks the required prefix or clashes with a category."""
    if not plugin_name.startswith(PLUGIN_NAME_PREFIXES):
        raise ConfigurationError(
            f"plugin name '{plugin_name}' does not start with '{PLUGIN_NAME_PREFIXES[0]}'"
        )

    if plugin_name in (config_json.get('categories') or {}):
        raise ConfigurationError(
            f"plugin name '{plugin_name}' not allowed because it is the id of a category "
            f"already found in config"
        )


def assert_valid_collector(collector: CollectorDefinition) -> None:
    """Raise unless the collector honours the collector contract."""
    name = collector.name
    meta = collector.meta

    if meta is None:
        raise ConfigurationError(f"{name} collector did not provide a meta object.")

    if not meta.supported_modes:
        raise ConfigurationError(f"{name} collector did not support any gather modes.")

    get_artifact = getattr(collector.instance, 'get_artifact', None)
    if not callable(get_artifact):
        raise ConfigurationError(f"{name} collector did not define a get_artifact method.")


def assert_artifact_topological_order(navigations: Sequence[NavigationDefinition]) -> None:
    """Raise unless every dependency is produced earlier in the navigation sequence.

    The artifacts of all navigations are checked as one concatenated list,
    so a later navigation may use what an earlier one produced.
    """
    available = set()

    for navigation in navigations:
        for artifact in navigation.artifacts:
            available.add(artifact.id)
            for dependency_name, dependency in (artifact.dependencies or {}).items():
                if dependency.id in available:
                    continue
                raise DependencyError(
                    f'Failed to find dependency "{dependency_name}" for "{artifact.id}" artifact',
                    artifact_id=artifact.id,
                    dependency_name=dependency_name,
                    dependency_id=dependency.id,
                )


def assert_valid_navigations(
    navigations: Sequence[NavigationDefinition]
) -> Tuple[List[NavigationDefinition], List[str]]:
    """Validate navigations.

    The first navigation must be fatal: it is reset to ``fatal`` with a
    warning when it is not.

    Returns:
        Tuple of (possibly corrected navigations, warnings)

    Raises:
        ConfigurationError: If navigation ids repeat
    """
    warnings: List[str] = []
    navigations = list(navigations)
    if not navigations:
        return navigations, warnings

    first = navigations[0]
    if first.load_failure_mode != LoadFailureMode.FATAL:
        mode = getattr(first.load_failure_mode, 'value', first.load_failure_mode)
        warnings.append(
            f'"{first.id}" is the first navigation but had a failure mode of {mode}. '
            f'The first navigation will always use a failure mode of fatal.'
        )
        navigations[0] = first.model_copy(update={'load_failure_mode': LoadFailureMode.FATAL})

    seen = set()
    for navigation in navigations:
        if navigation.id in seen:
            raise ConfigurationError(
                f'Navigation must have unique identifiers, but "{navigation.id}" was repeated.'
            )
        seen.add(navigation.id)

    return navigations, warnings


def assert_valid_settings(settings: Settings) -> None:
    """Raise on settings combinations that cannot produce a usable run."""
    if settings.form_factor is None:
        raise ConfigurationError("`settings.form_factor` is required")

    if settings.max_wait_for_load < settings.max_wait_for_fcp:
        raise ConfigurationError(
            f"`settings.max_wait_for_load` ({settings.max_wait_for_load}ms) must not be shorter "
            f"than `settings.max_wait_for_fcp` ({settings.max_wait_for_fcp}ms)"
        )


def assert_valid_config(config: ResolvedConfig) -> Tuple[ResolvedConfig, List[str]]:
    """Validate a resolved config.

    Returns:
        Tuple of (config with corrected navigations, warnings)
    """
    for artifact in config.artifacts or ():
        assert_valid_collector(artifact.collector)

    warnings: List[str] = []
    if config.navigations is not None:
        navigations, warnings = assert_valid_navigations(config.navigations)
        config = config.model_copy(update={'navigations': tuple(navigations)})

    assert_valid_settings(config.settings)

    for warning in warnings:
        logger.warning(warning)

    return config, warnings
