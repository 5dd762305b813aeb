"""Collectors the runner needs regardless of configuration."""

from .devtools_log import DevtoolsLog, DevtoolsMessageLog
from .trace import Trace

__all__ = ['DevtoolsLog', 'DevtoolsMessageLog', 'Trace']
