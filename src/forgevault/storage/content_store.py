"""Content store: the authoritative home of manifests and payloads.

Layout per component id::

    {id}/draft/content
    {id}/draft/manifest.json
    {id}/versions/v{N}/content
    {id}/versions/v{N}/manifest.json

Drafts are stored non-cacheable and are overwritten in place; versions are
stored immutable and are written create-only, so two publishes racing for
the same number cannot clobber each other.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from forgevault.models.errors import VersionCollisionError
from forgevault.models.manifest import ComponentHeader, DraftManifest, VersionManifest
from forgevault.storage.blob import CACHE_IMMUTABLE, CACHE_MUTABLE, BlobBackend, BlobExistsError

logger = logging.getLogger("forgevault.storage.content")

MANIFEST_CONTENT_TYPE = "application/json"

_VERSION_DIR_RE = re.compile(r"/versions/v(\d+)/$")


def component_prefix(component_id: str) -> str:
    return f"{component_id}/"


def draft_content_key(component_id: str) -> str:
    return f"{component_id}/draft/content"


def draft_manifest_key(component_id: str) -> str:
    return f"{component_id}/draft/manifest.json"


def version_content_key(component_id: str, version: int) -> str:
    return f"{component_id}/versions/v{version}/content"


def version_manifest_key(component_id: str, version: int) -> str:
    return f"{component_id}/versions/v{version}/manifest.json"


@dataclass
class ComponentSnapshot:
    """Every manifest stored for one component."""

    component_id: str
    draft: DraftManifest | None = None
    versions: list[VersionManifest] = field(default_factory=list)

    @property
    def latest(self) -> VersionManifest | None:
        return self.versions[-1] if self.versions else None

    @property
    def header(self) -> ComponentHeader | None:
        if self.versions:
            return self.versions[-1].component
        return self.draft.component if self.draft else None


@dataclass
class ScanPage:
    """One bounded page of a full content-store scan."""

    snapshots: list[ComponentSnapshot] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    cursor: str | None = None

    @property
    def done(self) -> bool:
        return self.cursor is None


@dataclass
class DeleteReport:
    component_id: str
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ContentStore:
    """Manifest and payload storage on top of a :class:`BlobBackend`."""

    def __init__(self, backend: BlobBackend, base_url: str = "") -> None:
        self.backend = backend
        self.base_url = base_url.rstrip("/")

    # -- URLs --------------------------------------------------------------

    def draft_manifest_url(self, component_id: str) -> str:
        return f"{self.base_url}/api/components/{component_id}/draft"

    def draft_content_url(self, component_id: str) -> str:
        return f"{self.base_url}/api/components/{component_id}/draft/content"

    def version_manifest_url(self, component_id: str, version: int) -> str:
        return f"{self.base_url}/api/components/{component_id}/versions/{version}"

    def version_content_url(self, component_id: str, version: int) -> str:
        return f"{self.base_url}/api/components/{component_id}/versions/{version}/content"

    # -- drafts ------------------------------------------------------------

    async def store_draft(self, component_id: str, content: bytes, manifest: DraftManifest) -> None:
        """Overwrite the draft slot. The manifest is written last and marks the draft present."""
        await self.backend.put(
            draft_content_key(component_id),
            content,
            content_type=manifest.mime_type,
            cache_control=CACHE_MUTABLE,
        )
        await self._put_manifest(draft_manifest_key(component_id), manifest, CACHE_MUTABLE)
        logger.debug("Stored draft for %s (revision %d)", component_id, manifest.revision)

    async def get_draft_content(self, component_id: str) -> bytes | None:
        obj = await self.backend.get(draft_content_key(component_id))
        return obj.data if obj else None

    async def get_draft_manifest(self, component_id: str) -> DraftManifest | None:
        obj = await self.backend.get(draft_manifest_key(component_id))
        return DraftManifest.model_validate_json(obj.data) if obj else None

    async def draft_exists(self, component_id: str) -> bool:
        return await self.backend.exists(draft_manifest_key(component_id))

    async def replace_draft_dependencies(
        self, component_id: str, dependencies: list[str]
    ) -> DraftManifest | None:
        """Rewrite only the dependency list of the draft manifest."""
        manifest = await self.get_draft_manifest(component_id)
        if manifest is None:
            return None
        updated = manifest.model_copy(update={"dependencies": list(dependencies)})
        await self._put_manifest(draft_manifest_key(component_id), updated, CACHE_MUTABLE)
        return updated

    async def delete_draft(self, component_id: str) -> None:
        await self.backend.delete(draft_manifest_key(component_id))
        await self.backend.delete(draft_content_key(component_id))

    # -- versions ----------------------------------------------------------

    async def store_version(
        self, component_id: str, version: int, content: bytes, manifest: VersionManifest
    ) -> None:
        """Write an immutable version.

        The manifest claims the version number with a create-only put; a
        lost race raises :class:`VersionCollisionError` and writes nothing.
        """
        manifest_key = version_manifest_key(component_id, version)
        try:
            await self._put_manifest(manifest_key, manifest, CACHE_IMMUTABLE, overwrite=False)
        except BlobExistsError as exc:
            raise VersionCollisionError(
                f"Version {version} of {component_id} already exists",
                component_id=component_id,
                version=version,
            ) from exc
        try:
            await self.backend.put(
                version_content_key(component_id, version),
                content,
                content_type=manifest.mime_type,
                cache_control=CACHE_IMMUTABLE,
            )
        except Exception:
            # Release the claimed number so the version is not left without a payload
            try:
                await self.backend.delete(manifest_key)
            except Exception:
                logger.exception("Could not roll back manifest %s", manifest_key)
            raise
        logger.debug("Stored version %d of %s", version, component_id)

    async def get_version_content(self, component_id: str, version: int) -> bytes | None:
        obj = await self.backend.get(version_content_key(component_id, version))
        return obj.data if obj else None

    async def get_version_manifest(self, component_id: str, version: int) -> VersionManifest | None:
        obj = await self.backend.get(version_manifest_key(component_id, version))
        return VersionManifest.model_validate_json(obj.data) if obj else None

    async def version_exists(self, component_id: str, version: int) -> bool:
        return await self.backend.exists(version_manifest_key(component_id, version))

    async def list_version_numbers(self, component_id: str) -> list[int]:
        numbers: list[int] = []
        cursor: str | None = None
        while True:
            listing = await self.backend.list(
                f"{component_id}/versions/", cursor=cursor, delimiter="/"
            )
            for prefix in listing.prefixes:
                match = _VERSION_DIR_RE.search(prefix)
                if match:
                    numbers.append(int(match.group(1)))
            cursor = listing.cursor
            if not listing.truncated:
                break
        return sorted(numbers)

    async def replace_version_dependencies(
        self, component_id: str, version: int, dependencies: list[str]
    ) -> VersionManifest | None:
        """Rewrite the dependency list of a version manifest; the payload is untouched."""
        manifest = await self.get_version_manifest(component_id, version)
        if manifest is None:
            return None
        updated = manifest.model_copy(update={"dependencies": list(dependencies)})
        await self._put_manifest(
            version_manifest_key(component_id, version), updated, CACHE_IMMUTABLE
        )
        return updated

    # -- components --------------------------------------------------------

    async def delete_component(self, component_id: str) -> DeleteReport:
        """Delete every object under the component's prefix, reporting per-key failures."""
        report = DeleteReport(component_id=component_id)
        keys: list[str] = []
        cursor: str | None = None
        while True:
            listing = await self.backend.list(component_prefix(component_id), cursor=cursor)
            keys.extend(listing.keys)
            cursor = listing.cursor
            if not listing.truncated:
                break
        # Manifests first, so a half-deleted component never shows a manifest without payload
        keys.sort(key=lambda k: (not k.endswith("manifest.json"), k))
        for key in keys:
            try:
                await self.backend.delete(key)
            except Exception as exc:
                logger.error("Failed to delete blob %s: %s", key, exc)
                report.failed[key] = str(exc)
            else:
                report.deleted.append(key)
        return report

    async def list_component_ids(
        self, cursor: str | None = None, limit: int = 100
    ) -> tuple[list[str], str | None]:
        """One page of component ids and the cursor for the next page (None when done)."""
        listing = await self.backend.list("", cursor=cursor, limit=limit, delimiter="/")
        ids = [prefix.rstrip("/") for prefix in listing.prefixes]
        return ids, listing.cursor

    async def load_snapshot(self, component_id: str) -> ComponentSnapshot | None:
        draft = await self.get_draft_manifest(component_id)
        versions: list[VersionManifest] = []
        for number in await self.list_version_numbers(component_id):
            manifest = await self.get_version_manifest(component_id, number)
            if manifest is not None:
                versions.append(manifest)
        if draft is None and not versions:
            return None
        return ComponentSnapshot(component_id=component_id, draft=draft, versions=versions)

    async def scan_page(self, cursor: str | None = None, limit: int = 100) -> ScanPage:
        """Load the snapshots of one page of components.

        A component whose manifests cannot be read is reported in ``errors``
        instead of failing the page.
        """
        ids, next_cursor = await self.list_component_ids(cursor, limit)
        page = ScanPage(cursor=next_cursor)
        for component_id in ids:
            try:
                snapshot = await self.load_snapshot(component_id)
            except Exception as exc:
                logger.warning("Unreadable manifests for %s: %s", component_id, exc)
                page.errors[component_id] = str(exc)
                continue
            if snapshot is not None:
                page.snapshots.append(snapshot)
        return page

    async def iterate_manifests(
        self, page_size: int = 100
    ) -> AsyncIterator[DraftManifest | VersionManifest]:
        """Yield every manifest in the store, walking the listing page by page."""
        cursor: str | None = None
        while True:
            page = await self.scan_page(cursor, page_size)
            for snapshot in page.snapshots:
                for manifest in snapshot.versions:
                    yield manifest
                if snapshot.draft is not None:
                    yield snapshot.draft
            if page.done:
                return
            cursor = page.cursor

    async def _put_manifest(
        self,
        key: str,
        manifest: DraftManifest | VersionManifest,
        cache_control: str,
        *,
        overwrite: bool = True,
    ) -> None:
        await self.backend.put(
            key,
            manifest.model_dump_json(indent=2).encode("utf-8"),
            content_type=MANIFEST_CONTENT_TYPE,
            cache_control=cache_control,
            overwrite=overwrite,
        )
