"""Constants shared by config resolution and the navigation runner."""

from pathlib import Path

DEFAULT_EXTENSION = "pagegather:default"

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default-config.yaml"

# Environment variables
ENVIRONMENT_ENV_VAR = "PAGEGATHER_ENV"
PROTOCOL_TIMEOUT_ENV_VAR = "PAGEGATHER_PROTOCOL_TIMEOUT_MS"

PLUGIN_NAME_PREFIXES = ("pagegather-plugin", "pagegather_plugin")

# Collectors that ship with the package, addressable by short name
CORE_COLLECTORS = {
    "devtools-log": "pagegather.gather.collectors.devtools_log:DevtoolsLog",
    "trace": "pagegather.gather.collectors.trace:Trace",
}

DEVTOOLS_LOG_SYMBOL = "devtools-log"
TRACE_SYMBOL = "trace"

DEFAULT_NAVIGATION = {
    "id": "default",
    "load_failure_mode": "fatal",
    "disable_throttling": False,
    "disable_storage_reset": False,
    "pause_after_fcp_ms": 0,
    "pause_after_load_ms": 0,
    "network_quiet_threshold_ms": 0,
    "cpu_quiet_threshold_ms": 0,
    "blocked_url_patterns": [],
    "blank_page": "about:blank",
}

# Quiet windows must be at least this long when throttling is applied for real
NON_SIMULATED_NAVIGATION_OVERRIDES = {
    "pause_after_fcp_ms": 5250,
    "pause_after_load_ms": 5250,
    "network_quiet_threshold_ms": 5250,
    "cpu_quiet_threshold_ms": 5250,
}

# Lower level means the artifact may run in fewer contexts
GATHER_MODE_LEVELS = {
    "timespan": 0,
    "snapshot": 1,
    "navigation": 2,
}
