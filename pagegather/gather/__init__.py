"""Navigation runner and the driver-level helpers it is built from."""

from .base_collector import BaseCollector, CollectorContext
from .collectors import DevtoolsLog, Trace
from .driver import Driver
from .navigation import NavigationOptions, NavigationResult, goto_url
from .navigation_runner import navigation_gather

__all__ = [
    'BaseCollector',
    'CollectorContext',
    'DevtoolsLog',
    'Trace',
    'Driver',
    'NavigationOptions',
    'NavigationResult',
    'goto_url',
    'navigation_gather',
]
