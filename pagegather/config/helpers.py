"""Helpers for turning a config document into resolved definitions.

Covers deep cloning and structural merging of config fragments, loading
collectors and plugins, and resolving settings with flag and environment
overrides.
"""

import copy
import importlib
import importlib.util
import inspect
import logging
import os
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..lib.errors import ConfigurationError
from ..models.config import AuditDefinition, CollectorDefinition, Settings
from .constants import (
    CORE_COLLECTORS,
    DEFAULT_CONFIG_PATH,
    ENVIRONMENT_ENV_VAR,
    PROTOCOL_TIMEOUT_ENV_VAR,
)

logger = logging.getLogger(__name__)


def deep_clone_config_json(value: Any) -> Any:
    """Clone a config document.

    Dicts and lists are copied recursively. Anything that is not plain JSON
    (collector classes or instances, plugin modules) is kept by reference.
    """
    if isinstance(value, dict):
        return {key: deep_clone_config_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [deep_clone_config_json(item) for item in value]
    return value


def load_default_config() -> Dict[str, Any]:
    """Load the packaged default config document.

    Raises:
        ConfigurationError: If the YAML cannot be parsed
    """
    try:
        with open(DEFAULT_CONFIG_PATH, 'r') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {DEFAULT_CONFIG_PATH}: {e}")


def apply_environment_overrides(config_json: Dict[str, Any]) -> Dict[str, Any]:
    """Merge the ``environments`` block selected by PAGEGATHER_ENV, then drop the block."""
    environments = config_json.pop('environments', None) or {}
    current_env = os.environ.get(ENVIRONMENT_ENV_VAR)

    if current_env and current_env in environments:
        logger.debug(f"Applying config overrides for environment {current_env!r}")
        merge_config_fragment(config_json, deep_clone_config_json(environments[current_env]))

    return config_json


def merge_config_fragment(base: Any, extension: Any, overwrite_arrays: bool = False) -> Any:
    """Recursively merge ``extension`` into ``base``.

    Objects are merged key by key, arrays are concatenated without
    duplicates unless ``overwrite_arrays`` is set, and scalars are replaced.
    Arrays under ``settings`` always overwrite. ``base`` is modified in place
    and returned.

    Raises:
        ConfigurationError: If the two fragments have incompatible types
    """
    if base is None:
        return extension
    if extension is None:
        return base

    if isinstance(extension, list):
        if overwrite_arrays:
            return extension
        if not isinstance(base, list):
            raise ConfigurationError(f"Expected array but got {type(base).__name__}")
        merged = list(base)
        for item in extension:
            if not any(candidate == item for candidate in merged):
                merged.append(item)
        return merged

    if isinstance(extension, dict):
        if not isinstance(base, dict):
            raise ConfigurationError(f"Expected object but got {type(base).__name__}")
        for key, value in extension.items():
            local_overwrite = overwrite_arrays or (key == 'settings' and isinstance(base.get(key), dict))
            base[key] = merge_config_fragment(base.get(key), value, local_overwrite)
        return base

    return extension


def merge_config_fragment_array_by_key(
    base_array: Optional[List[Any]],
    extension_array: Optional[List[Any]],
    key_fn: Callable[[Any], Any]
) -> List[Any]:
    """Merge two arrays of config items, matching items by ``key_fn``.

    Matching items are merged with arrays overwritten; unmatched extension
    items are appended.
    """
    merged = base_array if base_array is not None else []
    index_by_key: Dict[Any, int] = {}
    for index, item in enumerate(merged):
        index_by_key[key_fn(item)] = index

    for item in extension_array or []:
        key = key_fn(item)
        if key in index_by_key:
            index = index_by_key[key]
            base_item = merged[index]
            if isinstance(item, dict) and isinstance(base_item, dict):
                merged[index] = merge_config_fragment(base_item, item, True)
            else:
                merged[index] = item
        else:
            index_by_key[key] = len(merged)
            merged.append(item)

    return merged


def item_id(item: Any) -> Any:
    """Key function merging config items by their ``id``."""
    if isinstance(item, dict):
        return item.get('id')
    return item


# Collectors

def _load_module_from_file(file_path: Path) -> ModuleType:
    module_name = f"pagegather_collector_{file_path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Unable to load collector module {file_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _resolve_collector_reference(reference: str, config_dir: Optional[str]) -> Any:
    """Import the object a string collector reference points to."""
    reference = CORE_COLLECTORS.get(reference, reference)

    module_ref, _, attr = reference.partition(':')
    if module_ref.endswith('.py'):
        file_path = Path(module_ref)
        if not file_path.is_absolute():
            file_path = Path(config_dir or os.getcwd()) / file_path
        if not file_path.exists():
            raise ConfigurationError(f"Unable to locate collector: {reference}")
        module = _load_module_from_file(file_path)
    else:
        try:
            module = importlib.import_module(module_ref)
        except ImportError as e:
            raise ConfigurationError(f"Unable to locate collector: {reference} ({e})")

    attr = attr or 'Collector'
    if not hasattr(module, attr):
        raise ConfigurationError(f"Collector module {module_ref} has no attribute {attr!r}")
    return getattr(module, attr)


def _collector_path(target: Any) -> str:
    cls = target if inspect.isclass(target) else type(target)
    return f"{cls.__module__}:{cls.__qualname__}"


def resolve_collector_to_defn(collector_json: Any, config_dir: Optional[str] = None) -> CollectorDefinition:
    """Load a collector reference into a CollectorDefinition.

    Accepted references: a core collector name, ``module:Attr``, a ``.py``
    file path (relative to ``config_dir``), a collector class, a collector
    instance, or a dict with ``path`` and/or ``instance``.

    Args:
        collector_json: The reference as written in the config
        config_dir: Base directory for relative file paths

    Returns:
        CollectorDefinition holding an instantiated collector

    Raises:
        ConfigurationError: If the reference cannot be loaded
    """
    path: Optional[str] = None
    target: Any = collector_json

    if isinstance(collector_json, dict):
        path = collector_json.get('path')
        target = collector_json.get('instance') or collector_json.get('implementation') or path
        if target is None:
            raise ConfigurationError(f"Invalid collector definition: {collector_json!r}")

    if isinstance(target, str):
        path = path or target
        target = _resolve_collector_reference(target, config_dir)

    if target is None:
        raise ConfigurationError(f"Invalid collector definition: {collector_json!r}")

    instance = target() if inspect.isclass(target) else target
    return CollectorDefinition(path=path or _collector_path(target), instance=instance)


# Audits

def resolve_audits_to_defns(audits_json: Optional[List[Any]]) -> Optional[List[AuditDefinition]]:
    """Normalize audit references, merging options of repeated paths."""
    if audits_json is None:
        return None

    by_path: Dict[str, Dict[str, Any]] = {}
    for audit in audits_json:
        if isinstance(audit, str):
            path, options = audit, {}
        elif isinstance(audit, dict) and isinstance(audit.get('path'), str):
            path, options = audit['path'], audit.get('options') or {}
        else:
            raise ConfigurationError(f"Invalid audit definition: {audit!r}")

        if path in by_path:
            by_path[path] = merge_config_fragment(by_path[path], copy.deepcopy(options))
        else:
            by_path[path] = copy.deepcopy(options)

    return [AuditDefinition(path=path, options=options) for path, options in by_path.items()]


# Plugins

def _import_plugin(plugin_name: str) -> ModuleType:
    module_name = plugin_name.replace('-', '_')
    try:
        return importlib.import_module(module_name)
    except ImportError:
        raise ConfigurationError(f"Unable to locate plugin: `{plugin_name}`.")


def merge_plugins(config_json: Dict[str, Any], config_dir: Optional[str], flags: Dict[str, Any]) -> Dict[str, Any]:
    """Merge the audits, category and groups of every requested plugin.

    Plugin names come from the config's ``plugins`` list and the
    ``plugins`` flag. Each plugin module exposes a ``PLUGIN`` mapping.
    """
    # Imported here to avoid a circular import
    from .validation import assert_valid_plugin_name

    plugin_names = list(config_json.get('plugins') or [])
    for name in flags.get('plugins') or []:
        if name not in plugin_names:
            plugin_names.append(name)

    for plugin_name in plugin_names:
        assert_valid_plugin_name(config_json, plugin_name)

        module = _import_plugin(plugin_name)
        plugin = getattr(module, 'PLUGIN', None)
        if not isinstance(plugin, dict):
            raise ConfigurationError(f"{plugin_name} has no valid PLUGIN mapping.")

        category = plugin.get('category')
        if not isinstance(category, dict):
            raise ConfigurationError(f"{plugin_name} has no valid category.")

        audits = plugin.get('audits') or []
        groups = {
            f"{plugin_name}-{group_id}": group
            for group_id, group in (plugin.get('groups') or {}).items()
        }

        plugin_json = {
            'audits': deep_clone_config_json(audits),
            'categories': {plugin_name: deep_clone_config_json(category)},
            'groups': groups or None,
        }
        config_json = merge_config_fragment(config_json, plugin_json)
        logger.debug(f"Merged plugin {plugin_name} ({len(audits)} audits)")

    return config_json


# Settings

def _environment_settings() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    timeout = os.environ.get(PROTOCOL_TIMEOUT_ENV_VAR)
    if timeout:
        try:
            overrides['protocol_timeout_ms'] = int(timeout)
        except ValueError:
            raise ConfigurationError(
                f"{PROTOCOL_TIMEOUT_ENV_VAR} must be an integer, got {timeout!r}"
            )
    return overrides


def resolve_settings(settings_json: Optional[Dict[str, Any]] = None, flags: Optional[Dict[str, Any]] = None) -> Settings:
    """Resolve settings from defaults, config settings, environment and flags.

    Flags that are not settings (``config_path``, ``plugins``) are ignored.

    Raises:
        ConfigurationError: If the merged settings fail validation
    """
    merged = merge_config_fragment({}, deep_clone_config_json(settings_json or {}), True)
    merged = merge_config_fragment(merged, _environment_settings(), True)

    known_fields = set(Settings.model_fields)
    flag_overrides = {
        key: value for key, value in (flags or {}).items()
        if key in known_fields and value is not None
    }
    merged = merge_config_fragment(merged, deep_clone_config_json(flag_overrides), True)

    try:
        return Settings(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}", details={"errors": e.errors()})
