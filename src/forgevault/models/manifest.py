"""Manifest documents stored next to every payload in the content store.

Manifests are the ground truth the derived indexes are rebuilt from, so
each one carries a copy of the owning component's identity header.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from forgevault.models.component import ArtifactKind, Provenance, utcnow
from forgevault.versioning.ids import version_id


class ComponentHeader(BaseModel):
    """Identity of the component a manifest belongs to."""

    id: str
    canonical_name: str
    kind: ArtifactKind
    creator: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class DraftManifest(BaseModel):
    component: ComponentHeader
    description: str = ""
    mime_type: str = "application/octet-stream"
    size: int = 0
    content_hash: str | None = None
    revision: int = Field(default=1, ge=1)
    updated_at: datetime = Field(default_factory=utcnow)
    provenance: Provenance = Field(default_factory=Provenance)
    metadata: dict[str, Any] = {}
    dependencies: list[str] = []


class VersionManifest(BaseModel):
    component: ComponentHeader
    version: int = Field(ge=1)
    semver: str
    parent_version_id: str | None = None
    description: str = ""
    changelog: str | None = None
    mime_type: str = "application/octet-stream"
    size: int = 0
    content_hash: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    provenance: Provenance = Field(default_factory=Provenance)
    metadata: dict[str, Any] = {}
    dependencies: list[str] = []
    embedding: list[float] | None = None

    @property
    def version_id(self) -> str:
        return version_id(self.component.id, self.version)
