"""Computed artifacts and the per-run cache they are memoized in."""

from .cache import ComputedArtifact, ComputedArtifactCache
from .network_records import NetworkRecorder, NetworkRecords

__all__ = [
    'ComputedArtifact',
    'ComputedArtifactCache',
    'NetworkRecorder',
    'NetworkRecords',
]
