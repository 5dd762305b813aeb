"""Config resolution package."""

from .resolver import (
    initialize_config,
    get_config_display_string,
    resolve_working_copy,
    resolve_extensions,
    resolve_artifacts_to_defns,
    resolve_navigations_to_defns,
    override_settings_for_gather_mode,
    override_navigation_throttling_windows,
)
from .filters import filter_config_by_gather_mode
from .validation import is_valid_artifact_dependency, assert_valid_config

__all__ = [
    'initialize_config',
    'get_config_display_string',
    'resolve_working_copy',
    'resolve_extensions',
    'resolve_artifacts_to_defns',
    'resolve_navigations_to_defns',
    'override_settings_for_gather_mode',
    'override_navigation_throttling_windows',
    'filter_config_by_gather_mode',
    'is_valid_artifact_dependency',
    'assert_valid_config',
]
