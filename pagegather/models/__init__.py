"""Data models package."""

from .config import (
    GatherMode,
    LoadFailureMode,
    ThrottlingMethod,
    FormFactor,
    ThrottlingSettings,
    Settings,
    CollectorMeta,
    CollectorDefinition,
    DependencyReference,
    ArtifactDefinition,
    NavigationDefinition,
    AuditDefinition,
    ResolvedConfig,
    GatherContext,
)

from .artifacts import (
    NetworkRequest,
    URLArtifact,
    TimingEntry,
    BaseArtifacts,
    ArtifactBundle,
    GatherResult,
)

from .protocol import TargetInfo, ProtocolMessage

__all__ = [
    # Config models
    'GatherMode',
    'LoadFailureMode',
    'ThrottlingMethod',
    'FormFactor',
    'ThrottlingSettings',
    'Settings',
    'CollectorMeta',
    'CollectorDefinition',
    'DependencyReference',
    'ArtifactDefinition',
    'NavigationDefinition',
    'AuditDefinition',
    'ResolvedConfig',
    'GatherContext',

    # Artifact models
    'NetworkRequest',
    'URLArtifact',
    'TimingEntry',
    'BaseArtifacts',
    'ArtifactBundle',
    'GatherResult',

    # Protocol models
    'TargetInfo',
    'ProtocolMessage',
]
