"""Capability registry: manifest storage, per-agent lookup and telemetry."""

from toolsmith.registry.registry import (
    CapabilityRegistry,
    LoadedTool,
    find_similar_names,
    similarity_score,
)
from toolsmith.registry.store import FileSystemManifestStore, ManifestStore

__all__ = [
    "CapabilityRegistry",
    "FileSystemManifestStore",
    "LoadedTool",
    "ManifestStore",
    "find_similar_names",
    "similarity_score",
]
