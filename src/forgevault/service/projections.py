"""Projections from content-store manifests onto the derived stores.

Publish and reindex both go through these functions, so a replay from the
content store produces exactly the rows and vectors a live write would.
"""

from __future__ import annotations

from forgevault.models.component import (
    Component,
    ComponentStatus,
    Draft,
    Version,
    kind_columns,
)
from forgevault.models.manifest import DraftManifest, VersionManifest
from forgevault.storage.content_store import ComponentSnapshot, ContentStore
from forgevault.storage.vector import ComponentVectorMetadata


def version_from_manifest(manifest: VersionManifest, content: ContentStore) -> Version:
    component_id = manifest.component.id
    return Version(
        id=manifest.version_id,
        component_id=component_id,
        version=manifest.version,
        semver=manifest.semver,
        parent_version_id=manifest.parent_version_id,
        description=manifest.description,
        changelog=manifest.changelog,
        content_url=content.version_content_url(component_id, manifest.version),
        manifest_url=content.version_manifest_url(component_id, manifest.version),
        size=manifest.size,
        mime_type=manifest.mime_type,
        content_hash=manifest.content_hash,
        created_at=manifest.created_at,
        provenance=manifest.provenance,
        metadata=manifest.metadata,
        dependencies=manifest.dependencies,
    )


def draft_from_manifest(manifest: DraftManifest, content: ContentStore) -> Draft:
    component_id = manifest.component.id
    return Draft(
        component_id=component_id,
        description=manifest.description,
        content_url=content.draft_content_url(component_id),
        manifest_url=content.draft_manifest_url(component_id),
        size=manifest.size,
        mime_type=manifest.mime_type,
        revision=manifest.revision,
        updated_at=manifest.updated_at,
        provenance=manifest.provenance,
        metadata=manifest.metadata,
        dependencies=manifest.dependencies,
    )


def component_from_snapshot(snapshot: ComponentSnapshot) -> Component:
    """Rebuild the component row from everything stored for it."""
    header = snapshot.header
    if header is None:
        raise ValueError(f"Snapshot of {snapshot.component_id} holds no manifests")
    latest = snapshot.latest
    draft = snapshot.draft
    timestamps = [header.created_at]
    if latest is not None:
        timestamps.append(latest.created_at)
    if draft is not None:
        timestamps.append(draft.updated_at)
    if draft is not None:
        description = draft.description
    elif latest is not None:
        description = latest.description
    else:
        description = ""
    return Component(
        id=header.id,
        canonical_name=header.canonical_name,
        status=ComponentStatus.PUBLISHED if latest else ComponentStatus.DRAFT,
        kind=header.kind,
        description=description,
        latest_version=latest.version if latest else 0,
        has_draft=draft is not None,
        creator=header.creator,
        created_at=header.created_at,
        updated_at=max(timestamps),
    )


def vector_metadata(component: Component, version: Version) -> ComponentVectorMetadata:
    type_, file_type, media_type = kind_columns(component.kind)
    return ComponentVectorMetadata(
        component_id=component.id,
        canonical_name=component.canonical_name,
        type=type_,
        file_type=file_type,
        media_type=media_type,
        description=version.description or component.description,
        latest_version=version.version,
        semver=version.semver,
        creator=component.creator,
    )
