"""Config resolution: from a declarative document to an executable plan.

``initialize_config`` loads the default or given config, applies the
extension and plugins, resolves settings, loads every collector, resolves
artifact dependencies in declaration order, builds navigations, validates
the result and filters it by gather mode.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from ..lib.errors import ConfigurationError, InvalidExtensionError
from ..models.config import (
    ArtifactDefinition,
    CollectorDefinition,
    DependencyReference,
    GatherMode,
    NavigationDefinition,
    ResolvedConfig,
    Settings,
    ThrottlingMethod,
)
from .constants import DEFAULT_CONFIG_PATH, DEFAULT_EXTENSION, DEFAULT_NAVIGATION, NON_SIMULATED_NAVIGATION_OVERRIDES
from .filters import filter_config_by_gather_mode
from .helpers import (
    apply_environment_overrides,
    deep_clone_config_json,
    item_id,
    load_default_config,
    merge_config_fragment,
    merge_config_fragment_array_by_key,
    merge_plugins,
    resolve_audits_to_defns,
    resolve_collector_to_defn,
    resolve_settings,
)
from .validation import (
    assert_artifact_topological_order,
    assert_valid_collector,
    assert_valid_config,
    is_valid_artifact_dependency,
    throw_invalid_artifact_dependency,
    throw_invalid_dependency_order,
)

logger = logging.getLogger(__name__)


def resolve_working_copy(
    config_json: Optional[Dict[str, Any]],
    flags: Optional[Dict[str, Any]] = None
) -> Tuple[Dict[str, Any], Optional[str]]:
    """Pick the config document to resolve and clone it.

    Args:
        config_json: Caller's config, or None for the built-in default
        flags: Run flags; ``config_path`` must be absolute when given

    Returns:
        Tuple of (working copy, directory relative collector paths resolve against)
    """
    config_path = (flags or {}).get('config_path')
    if config_path and not os.path.isabs(config_path):
        raise ConfigurationError("config_path must be an absolute path", details={"config_path": config_path})

    if not config_json:
        config_json = load_default_config()
        config_path = str(DEFAULT_CONFIG_PATH)

    config_dir = os.path.dirname(config_path) if config_path else None
    working_copy = apply_environment_overrides(deep_clone_config_json(config_json))
    return working_copy, config_dir


def resolve_extensions(config_json: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a config that ``extends`` the default onto a fresh copy of the default."""
    extends = config_json.get('extends')
    if not extends:
        return config_json

    if extends != DEFAULT_EXTENSION:
        raise InvalidExtensionError(extends)

    extension_json = {
        key: value for key, value in config_json.items()
        if key not in ('artifacts', 'navigations', 'extends')
    }
    default_clone = apply_environment_overrides(deep_clone_config_json(load_default_config()))
    merged = merge_config_fragment(default_clone, extension_json)

    merged['artifacts'] = merge_config_fragment_array_by_key(
        default_clone.get('artifacts'), config_json.get('artifacts'), item_id
    )
    merged['navigations'] = merge_config_fragment_array_by_key(
        default_clone.get('navigations'), config_json.get('navigations'), item_id
    )
    return merged


def resolve_artifact_dependencies(
    artifact_json: Dict[str, Any],
    collector: CollectorDefinition,
    defns_by_symbol: Dict[str, ArtifactDefinition]
) -> Optional[Dict[str, DependencyReference]]:
    """Map each declared dependency to an earlier artifact producing its symbol."""
    if collector.meta.dependencies is None:
        return None

    artifact_id = artifact_json['id']
    dependencies = {}
    for dependency_name, symbol in collector.meta.dependencies.items():
        dependency = defns_by_symbol.get(symbol)
        if dependency is None:
            throw_invalid_dependency_order(artifact_id, dependency_name)

        if not is_valid_artifact_dependency(collector, dependency.collector):
            throw_invalid_artifact_dependency(artifact_id, dependency_name, dependency.id)

        dependencies[dependency_name] = DependencyReference(id=dependency.id)

    return dependencies


def resolve_artifacts_to_defns(
    artifacts_json: Optional[List[Dict[str, Any]]],
    config_dir: Optional[str] = None
) -> Optional[List[ArtifactDefinition]]:
    """Load collectors and resolve dependencies in one left-to-right pass."""
    if artifacts_json is None:
        return None

    defns_by_symbol: Dict[str, ArtifactDefinition] = {}
    artifact_defns = []
    for artifact_json in artifacts_json:
        if not isinstance(artifact_json, dict) or not artifact_json.get('id'):
            raise ConfigurationError(f"Invalid artifact definition: {artifact_json!r}")
        if 'collector' not in artifact_json:
            raise ConfigurationError(f"Artifact \"{artifact_json['id']}\" does not declare a collector")

        collector = resolve_collector_to_defn(artifact_json['collector'], config_dir)
        assert_valid_collector(collector)

        artifact = ArtifactDefinition(
            id=artifact_json['id'],
            collector=collector,
            dependencies=resolve_artifact_dependencies(artifact_json, collector, defns_by_symbol),
        )

        symbol = collector.meta.symbol
        if symbol:
            defns_by_symbol[symbol] = artifact
        artifact_defns.append(artifact)

    logger.debug(f"Resolved {len(artifact_defns)} artifact definitions")
    return artifact_defns


def override_settings_for_gather_mode(settings: Settings, gather_mode: GatherMode) -> Settings:
    """Swap out settings that do not apply to ``gather_mode``.

    Timespans have no full page load to simulate throttling against, so
    simulated throttling is applied for real instead.
    """
    updates: Dict[str, Any] = {'gather_mode': gather_mode}
    if gather_mode == GatherMode.TIMESPAN and settings.throttling_method == ThrottlingMethod.SIMULATE:
        updates['throttling_method'] = ThrottlingMethod.DEVTOOLS
    return settings.model_copy(update=updates)


def override_navigation_throttling_windows(navigation: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    """Raise quiet windows to their floor when throttling is applied for real."""
    if navigation.get('disable_throttling'):
        return navigation
    if settings.throttling_method == ThrottlingMethod.SIMULATE:
        return navigation

    for key, floor in NON_SIMULATED_NAVIGATION_OVERRIDES.items():
        navigation[key] = max(navigation.get(key) or 0, floor)
    return navigation


def resolve_navigations_to_defns(
    navigations_json: Optional[List[Dict[str, Any]]],
    artifact_defns: Optional[List[ArtifactDefinition]],
    settings: Settings
) -> Optional[List[NavigationDefinition]]:
    """Resolve navigation artifact ids to definitions and apply defaults."""
    if navigations_json is None:
        return None
    if artifact_defns is None:
        raise ConfigurationError("Cannot use navigations without defining artifacts")

    artifacts_by_id = {defn.id: defn for defn in artifact_defns}

    navigation_defns = []
    for navigation_json in navigations_json:
        navigation = {**deep_clone_config_json(DEFAULT_NAVIGATION), **navigation_json}
        nav_id = navigation['id']

        artifacts = []
        for artifact_id in navigation.get('artifacts') or []:
            artifact = artifacts_by_id.get(artifact_id)
            if artifact is None:
                raise ConfigurationError(f'Unrecognized artifact "{artifact_id}" in navigation "{nav_id}"')
            artifacts.append(artifact)

        navigation['artifacts'] = tuple(artifacts)
        navigation = override_navigation_throttling_windows(navigation, settings)

        try:
            navigation_defns.append(NavigationDefinition(**navigation))
        except ValueError as e:
            raise ConfigurationError(f'Invalid navigation "{nav_id}": {e}')

    assert_artifact_topological_order(navigation_defns)

    logger.debug(f"Resolved {len(navigation_defns)} navigation definitions")
    return navigation_defns


def initialize_config(
    gather_mode: GatherMode,
    config_json: Optional[Dict[str, Any]] = None,
    flags: Optional[Dict[str, Any]] = None
) -> Tuple[ResolvedConfig, List[str]]:
    """Resolve a config document into an executable plan.

    Args:
        gather_mode: Mode the run gathers in
        config_json: Config document, or None for the built-in default
        flags: Settings overrides plus ``config_path`` and ``plugins``

    Returns:
        Tuple of (resolved config, warnings)

    Raises:
        ConfigurationError: If the document is malformed
        DependencyError: If artifact dependencies are out of order or incompatible
    """
    gather_mode = GatherMode(gather_mode)
    flags = flags or {}

    config_working_copy, config_dir = resolve_working_copy(config_json, flags)
    config_working_copy = resolve_extensions(config_working_copy)
    config_working_copy = merge_plugins(config_working_copy, config_dir, flags)

    settings = resolve_settings(config_working_copy.get('settings') or {}, flags)
    settings = override_settings_for_gather_mode(settings, gather_mode)

    artifacts = resolve_artifacts_to_defns(config_working_copy.get('artifacts'), config_dir)
    navigations = resolve_navigations_to_defns(config_working_copy.get('navigations'), artifacts, settings)
    audits = resolve_audits_to_defns(config_working_copy.get('audits'))

    config = ResolvedConfig(
        artifacts=tuple(artifacts) if artifacts is not None else None,
        navigations=tuple(navigations) if navigations is not None else None,
        audits=tuple(audits) if audits is not None else None,
        categories=config_working_copy.get('categories') or None,
        groups=config_working_copy.get('groups') or None,
        settings=settings,
    )

    config, warnings = assert_valid_config(config)
    config = filter_config_by_gather_mode(config, gather_mode)

    logger.info(
        f"Initialized {gather_mode.value} config with {len(config.artifacts or ())} artifacts "
        f"and {len(config.navigations or ())} navigations"
    )
    return config, warnings


def get_config_display_string(config: ResolvedConfig) -> str:
    """Render a resolved config as deterministic JSON.

    Collectors are shown by path, navigations list artifact ids, and
    resolved dependencies are omitted.
    """
    display: Dict[str, Any] = {}

    if config.artifacts is not None:
        display['artifacts'] = [
            {'id': artifact.id, 'collector': artifact.collector.path}
            for artifact in config.artifacts
        ]
    else:
        display['artifacts'] = None

    if config.navigations is not None:
        navigations = []
        for navigation in config.navigations:
            navigation_json = navigation.model_dump(mode='json', exclude={'artifacts'})
            navigation_json['artifacts'] = navigation.artifact_ids
            navigations.append(navigation_json)
        display['navigations'] = navigations
    else:
        display['navigations'] = None

    if config.audits is not None:
        audits = []
        for audit in config.audits:
            audit_json: Dict[str, Any] = {'path': audit.path}
            if audit.options:
                audit_json['options'] = audit.options
            audits.append(audit_json)
        display['audits'] = audits
    else:
        display['audits'] = None

    display['categories'] = config.categories
    display['groups'] = config.groups
    display['settings'] = config.settings.model_dump(mode='json')

    return json.dumps(display, indent=2, default=str)
