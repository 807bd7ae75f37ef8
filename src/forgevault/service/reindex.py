"""Repair procedures that rebuild derived state from the content store.

Both procedures walk the content store one bounded page at a time and
return a cursor, so a full-corpus pass can be split across invocations
and restarted at any page boundary.
"""

from __future__ import annotations

import logging

from forgevault.dependencies.extractor import Resolver, extract_dependencies, is_scannable
from forgevault.models.component import MediaAsset, kind_columns
from forgevault.models.errors import StorageError
from forgevault.models.manifest import ComponentHeader, VersionManifest
from forgevault.service.projections import (
    component_from_snapshot,
    vector_metadata,
    version_from_manifest,
)
from forgevault.service.results import DependencyReindexReport, ItemResult, ReindexReport
from forgevault.storage.content_store import ComponentSnapshot, ContentStore, ScanPage
from forgevault.storage.relational import RelationalIndex
from forgevault.storage.vector import VectorSearchIndex
from forgevault.versioning.refs import LATEST

logger = logging.getLogger("forgevault.service.reindex")


class Reindexer:
    def __init__(
        self,
        content: ContentStore,
        index: RelationalIndex,
        vectors: VectorSearchIndex,
        *,
        resolve_reference: Resolver,
        page_size: int = 100,
    ) -> None:
        self._content = content
        self._index = index
        self._vectors = vectors
        self._resolve_reference = resolve_reference
        self.page_size = page_size

    async def _pages(self, cursor: str | None, page_size: int | None, max_pages: int | None):
        pages = 0
        while True:
            page = await self._content.scan_page(cursor, page_size or self.page_size)
            pages += 1
            yield page
            cursor = page.cursor
            if page.done or (max_pages is not None and pages >= max_pages):
                return

    # -- relational + vector rebuild ---------------------------------------

    async def reindex(
        self,
        cursor: str | None = None,
        *,
        max_pages: int | None = None,
        page_size: int | None = None,
    ) -> ReindexReport:
        """Replay manifests into the relational and vector indexes."""
        report = ReindexReport(cursor=cursor)
        page: ScanPage
        async for page in self._pages(cursor, page_size, max_pages):
            report.pages += 1
            for component_id, message in page.errors.items():
                report.errors.append(ItemResult(id=component_id, ok=False, error=message))
            for snapshot in page.snapshots:
                report.scanned += 1
                try:
                    report.vectors += await self._replay(snapshot)
                except Exception as exc:
                    logger.error("Reindex of %s failed: %s", snapshot.component_id, exc)
                    report.errors.append(
                        ItemResult(id=snapshot.component_id, ok=False, error=str(exc))
                    )
                    continue
                report.indexed += 1
                report.versions += len(snapshot.versions)
            report.cursor = page.cursor
        logger.info(
            "Reindex pass: %d scanned, %d indexed, %d vectors, %d errors, done=%s",
            report.scanned,
            report.indexed,
            report.vectors,
            len(report.errors),
            report.done,
        )
        return report

    async def _replay(self, snapshot: ComponentSnapshot) -> int:
        component = component_from_snapshot(snapshot)
        await self._index.upsert_component(component)
        versions = [version_from_manifest(m, self._content) for m in snapshot.versions]
        for version in versions:
            await self._index.index_version(version)
        if not versions:
            await self._vectors.remove_component(component.id)
            return 0

        latest, manifest = versions[-1], snapshot.versions[-1]
        await self._index.replace_dependencies(component.id, latest.dependencies)
        await self._refresh_latest_ref(component.canonical_name, latest.id, manifest)

        vector = manifest.embedding
        if vector is None:
            payload = None
            if not isinstance(component.kind, MediaAsset):
                payload = await self._content.get_version_content(component.id, latest.version)
            vector = await self._vectors.embed_component(manifest.description, payload)
        await self._vectors.index_component(
            component.id, vector, vector_metadata(component, latest)
        )
        return 1

    async def _refresh_latest_ref(
        self, canonical_name: str, version_id: str, manifest: VersionManifest
    ) -> None:
        """Point ``latest`` at this version unless a newer one of the same name holds it."""
        current = await self._index.get_ref(canonical_name, LATEST)
        if current is not None:
            if current.target_id == version_id:
                return
            holder = await self._index.get_version(current.target_id)
            if holder is not None and holder.created_at >= manifest.created_at:
                return
        await self._index.set_ref(canonical_name, LATEST, version_id)

    # -- dependency rescan -------------------------------------------------

    async def reindex_dependencies(
        self,
        cursor: str | None = None,
        *,
        max_pages: int | None = None,
        page_size: int | None = None,
    ) -> DependencyReindexReport:
        """Re-extract dependencies of every scannable artifact.

        Only manifests whose extracted set differs from the stored one are
        rewritten, and only their dependency list changes.
        """
        report = DependencyReindexReport(cursor=cursor)
        async for page in self._pages(cursor, page_size, max_pages):
            report.pages += 1
            for component_id, message in page.errors.items():
                report.errors.append(ItemResult(id=component_id, ok=False, error=message))
            for snapshot in page.snapshots:
                await self._rescan_component(snapshot, report)
            report.cursor = page.cursor
        logger.info(
            "Dependency rescan: %d scanned, %d updated, %d skipped, %d errors, done=%s",
            report.scanned,
            report.updated,
            report.skipped,
            len(report.errors),
            report.done,
        )
        return report

    async def _rescan_component(
        self, snapshot: ComponentSnapshot, report: DependencyReindexReport
    ) -> None:
        header = snapshot.header
        if header is None:
            return
        artifacts = len(snapshot.versions) + (1 if snapshot.draft else 0)
        if not is_scannable(kind_columns(header.kind)[1]):
            report.scanned += artifacts
            report.skipped += artifacts
            return
        latest = snapshot.latest
        for manifest in snapshot.versions:
            report.scanned += 1
            try:
                changed = await self._rescan_version(header, manifest, manifest is latest)
            except Exception as exc:
                logger.error("Dependency rescan of %s failed: %s", manifest.version_id, exc)
                report.errors.append(ItemResult(id=manifest.version_id, ok=False, error=str(exc)))
                continue
            if changed:
                report.updated += 1
            else:
                report.skipped += 1
        if snapshot.draft is not None:
            report.scanned += 1
            label = f"{header.id}-draft"
            try:
                changed = await self._rescan_draft(header, snapshot.draft.dependencies)
            except Exception as exc:
                logger.error("Dependency rescan of %s failed: %s", label, exc)
                report.errors.append(ItemResult(id=label, ok=False, error=str(exc)))
                return
            if changed:
                report.updated += 1
            else:
                report.skipped += 1

    async def _extract(self, payload: bytes, header: ComponentHeader) -> list[str]:
        found = await extract_dependencies(
            payload.decode("utf-8", errors="replace"),
            header.canonical_name,
            self._resolve_reference,
            own_id=header.id,
        )
        return found.component_ids

    async def _rescan_version(
        self, header: ComponentHeader, manifest: VersionManifest, is_latest: bool
    ) -> bool:
        payload = await self._content.get_version_content(header.id, manifest.version)
        if payload is None:
            raise StorageError(
                f"Payload of {manifest.version_id} is missing", component_id=header.id
            )
        extracted = await self._extract(payload, header)
        if set(extracted) == set(manifest.dependencies):
            return False
        updated = await self._content.replace_version_dependencies(
            header.id, manifest.version, extracted
        )
        if updated is None:
            raise StorageError(
                f"Manifest of {manifest.version_id} vanished", component_id=header.id
            )
        await self._index.index_version(version_from_manifest(updated, self._content))
        if is_latest:
            await self._index.replace_dependencies(header.id, extracted)
        logger.info("Dependencies of %s now %s", manifest.version_id, extracted)
        return True

    async def _rescan_draft(self, header: ComponentHeader, stored: list[str]) -> bool:
        payload = await self._content.get_draft_content(header.id)
        if payload is None:
            raise StorageError(f"Draft payload of {header.id} is missing", component_id=header.id)
        extracted = await self._extract(payload, header)
        if set(extracted) == set(stored):
            return False
        await self._content.replace_draft_dependencies(header.id, extracted)
        logger.info("Dependencies of %s draft now %s", header.id, extracted)
        return True
