"""Tests for rebuilding the derived stores from the content store."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from forgevault.models.errors import EmbeddingUnavailableError, PartialFailureError
from forgevault.service.components import ComponentService
from forgevault.storage.blob import InMemoryBlobBackend
from forgevault.storage.content_store import ContentStore, draft_manifest_key
from forgevault.storage.embedding import HashingEmbedder
from forgevault.storage.relational import RelationalIndex
from forgevault.storage.vector import InMemoryVectorBackend, VectorSearchIndex

MakeInput = Callable[..., dict[str, Any]]


@pytest.fixture
async def fresh_index() -> AsyncIterator[RelationalIndex]:
    index = RelationalIndex.from_url("sqlite+aiosqlite://")
    await index.create_schema()
    yield index
    await index.close()


@pytest.fixture
def fresh_vectors() -> VectorSearchIndex:
    return VectorSearchIndex(InMemoryVectorBackend(), HashingEmbedder(256))


@pytest.fixture
def fresh(
    content_store: ContentStore, fresh_index: RelationalIndex, fresh_vectors: VectorSearchIndex
) -> ComponentService:
    """A second service over the same content store but empty derived stores."""
    return ComponentService(content_store, fresh_index, fresh_vectors, reindex_page_size=2)


async def _populate(service: ComponentService, make_input: MakeInput) -> dict[str, str]:
    toggle = (await service.create(make_input())).component.id
    await service.publish(toggle)
    await service.update_draft(toggle, {"content": "v2-src"})
    await service.publish(toggle, "minor")
    card = await service.create(
        make_input("card-src", canonical_name="card", description="A card")
    )
    await service.publish(card.component.id)
    sketch = await service.create(make_input("sketch-src", canonical_name="sketch"))
    return {"toggle": toggle, "card": card.component.id, "sketch": sketch.component.id}


class TestReindex:
    async def test_rebuilds_empty_indexes(
        self,
        service: ComponentService,
        fresh: ComponentService,
        fresh_index: RelationalIndex,
        fresh_vectors: VectorSearchIndex,
        make_input: MakeInput,
    ) -> None:
        ids = await _populate(service, make_input)
        report = await fresh.reindex()

        assert report.done
        assert report.errors == []
        assert (report.scanned, report.indexed, report.versions, report.vectors) == (3, 3, 3, 2)
        assert report.pages == 2

        assert await fresh.count() == 3
        resolution = await fresh.resolve("toggle@latest")
        assert resolution.version_id == f"{ids['toggle']}-v2"
        assert resolution.semver == "1.1.0"
        assert [v.version for v in await fresh.get_version_history(ids["toggle"])] == [2, 1]

        sketch = await fresh_index.get_component(ids["sketch"])
        assert sketch is not None
        assert sketch.has_draft
        assert sketch.latest_version == 0
        assert not await fresh_vectors.is_indexed(ids["sketch"])

        hits = await fresh.search("toggle switch")
        assert hits[0].component_id == ids["toggle"]

    async def test_idempotent(
        self, service: ComponentService, relational: RelationalIndex, make_input: MakeInput
    ) -> None:
        ids = await _populate(service, make_input)
        first = await service.reindex()
        second = await service.reindex()
        assert (first.indexed, first.versions) == (second.indexed, second.versions)
        assert await service.count() == 3
        assert len(await relational.get_version_history(ids["toggle"])) == 2
        refs = await service.get_refs("toggle")
        assert [(r.ref_name, r.target_id) for r in refs] == [("latest", f"{ids['toggle']}-v2")]

    async def test_pagination(
        self, service: ComponentService, fresh: ComponentService, make_input: MakeInput
    ) -> None:
        await _populate(service, make_input)
        first = await fresh.reindex(max_pages=1)
        assert first.scanned == 2
        assert not first.done
        rest = await fresh.reindex(first.cursor)
        assert rest.scanned == 1
        assert rest.done
        assert await fresh.count() == 3

    async def test_latest_goes_to_newest_publish(
        self,
        service: ComponentService,
        fresh: ComponentService,
        publish_new: Callable[..., Any],
    ) -> None:
        await publish_new("first")
        await asyncio.sleep(0.01)
        second = (await publish_new("second")).component.id
        await fresh.reindex()
        assert (await fresh.resolve("toggle")).component_id == second

    async def test_reembeds_when_no_embedding_stored(
        self,
        service: ComponentService,
        vectors: VectorSearchIndex,
        content_store: ContentStore,
        make_input: MakeInput,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def offline(*args: Any, **kwargs: Any) -> list[float]:
            raise EmbeddingUnavailableError("model offline")

        monkeypatch.setattr(vectors, "embed_component", offline)
        cid = (await service.create(make_input())).component.id
        await service.publish(cid)
        manifest = await content_store.get_version_manifest(cid, 1)
        assert manifest is not None
        assert manifest.embedding is None

        monkeypatch.undo()
        report = await service.reindex()
        assert report.vectors == 1
        assert await vectors.is_indexed(cid)
        assert (await service.search("toggle switch"))[0].component_id == cid

    async def test_repairs_partial_publish(
        self,
        service: ComponentService,
        relational: RelationalIndex,
        vectors: VectorSearchIndex,
        make_input: MakeInput,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def broken(*args: Any, **kwargs: Any) -> None:
            raise RuntimeError("database is locked")

        cid = (await service.create(make_input())).component.id
        monkeypatch.setattr(relational, "publish_component", broken)
        with pytest.raises(PartialFailureError):
            await service.publish(cid)
        monkeypatch.undo()

        indexed = await relational.get_component(cid)
        assert indexed is not None
        assert indexed.latest_version == 0

        report = await service.reindex()
        assert report.errors == []
        indexed = await relational.get_component(cid)
        assert indexed is not None
        assert indexed.latest_version == 1
        assert not indexed.has_draft
        assert (await service.resolve("toggle@1.0.0")).version_id == f"{cid}-v1"
        assert await vectors.is_indexed(cid)

    async def test_unreadable_manifest_is_reported(
        self,
        service: ComponentService,
        fresh: ComponentService,
        blob_backend: InMemoryBlobBackend,
        make_input: MakeInput,
    ) -> None:
        broken = (await service.create(make_input())).component.id
        good = (await service.create(make_input("ok", canonical_name="card"))).component.id
        await blob_backend.put(draft_manifest_key(broken), b"{not json")

        report = await fresh.reindex()
        assert [e.id for e in report.errors] == [broken]
        assert report.indexed == 1
        assert await fresh.lookup_component_id(good) == good


class TestReindexDependencies:
    async def _publish(
        self, service: ComponentService, make_input: MakeInput, content: str, name: str, **kw: Any
    ) -> str:
        cid = (
            await service.create(make_input(content, canonical_name=name, description=name, **kw))
        ).component.id
        await service.publish(cid)
        return cid

    async def test_rewrites_changed_manifests_only(
        self,
        service: ComponentService,
        content_store: ContentStore,
        relational: RelationalIndex,
        make_input: MakeInput,
    ) -> None:
        button = await self._publish(service, make_input, "export const Button = 1;", "button")
        card = await self._publish(service, make_input, "import B from './button';", "card")
        await self._publish(
            service, make_input, "import './button';", "styles-sheet", file_type="css"
        )

        report = await service.reindex_dependencies()
        assert report.done
        assert report.errors == []
        assert (report.scanned, report.updated, report.skipped) == (3, 1, 2)

        manifest = await content_store.get_version_manifest(card, 1)
        assert manifest is not None
        assert manifest.dependencies == [button]
        version = await relational.get_version(f"{card}-v1")
        assert version is not None
        assert version.dependencies == [button]
        assert await relational.list_dependency_edges() == [(card, button)]

        again = await service.reindex_dependencies()
        assert (again.updated, again.skipped) == (0, 3)

    async def test_draft_dependencies(
        self, service: ComponentService, content_store: ContentStore, make_input: MakeInput
    ) -> None:
        button = await self._publish(service, make_input, "export const Button = 1;", "button")
        panel = (
            await service.create(
                make_input("<forge-x></forge-x>\nimport B from './button';", canonical_name="panel")
            )
        ).component.id

        report = await service.reindex_dependencies()
        assert report.updated == 1
        draft = await content_store.get_draft_manifest(panel)
        assert draft is not None
        assert draft.dependencies == [button]
