"""pagegather: gather page artifacts over the DevTools protocol for auditing."""

from .config import initialize_config, get_config_display_string
from .gather import BaseCollector, CollectorContext, Driver, navigation_gather
from .lib.errors import (
    GatherError,
    ConfigurationError,
    DependencyError,
    ProtocolTimeoutError,
    NavigationError,
    NavigationErrorCode,
    CollectorError,
)
from .logging_config import configure_logging
from .models import CollectorMeta, GatherMode, GatherResult, Settings

__version__ = "0.1.0"

__all__ = [
    'initialize_config',
    'get_config_display_string',
    'navigation_gather',
    'BaseCollector',
    'CollectorContext',
    'Driver',
    'GatherError',
    'ConfigurationError',
    'DependencyError',
    'ProtocolTimeoutError',
    'NavigationError',
    'NavigationErrorCode',
    'CollectorError',
    'configure_logging',
    'CollectorMeta',
    'GatherMode',
    'GatherResult',
    'Settings',
]
