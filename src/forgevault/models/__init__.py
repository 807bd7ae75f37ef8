"""Pydantic domain models for the forgevault registry."""

from forgevault.models.component import (
    ArtifactKind,
    Bundle,
    CodeFile,
    Component,
    ComponentStatus,
    Draft,
    LifecycleState,
    MediaAsset,
    MediaType,
    Provenance,
    Ref,
    SourceType,
    Version,
)
from forgevault.models.errors import ErrorInfo, ErrorKind, RegistryError, StepFailure
from forgevault.models.manifest import ComponentHeader, DraftManifest, VersionManifest

__all__ = [
    "ArtifactKind",
    "Bundle",
    "CodeFile",
    "Component",
    "ComponentHeader",
    "ComponentStatus",
    "Draft",
    "DraftManifest",
    "ErrorInfo",
    "ErrorKind",
    "LifecycleState",
    "MediaAsset",
    "MediaType",
    "Provenance",
    "Ref",
    "RegistryError",
    "SourceType",
    "StepFailure",
    "Version",
    "VersionManifest",
]
