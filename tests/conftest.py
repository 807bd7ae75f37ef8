"""Shared test fixtures for forgevault."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from forgevault.service.components import ComponentService
from forgevault.storage.blob import InMemoryBlobBackend
from forgevault.storage.content_store import ContentStore
from forgevault.storage.embedding import HashingEmbedder
from forgevault.storage.relational import RelationalIndex
from forgevault.storage.vector import InMemoryVectorBackend, VectorSearchIndex

BASE_URL = "http://test"
MEMORY_DB_URL = "sqlite+aiosqlite://"


@pytest.fixture
def blob_backend() -> InMemoryBlobBackend:
    return InMemoryBlobBackend()


@pytest.fixture
def content_store(blob_backend: InMemoryBlobBackend) -> ContentStore:
    return ContentStore(blob_backend, BASE_URL)


@pytest.fixture
async def relational() -> AsyncIterator[RelationalIndex]:
    """In-memory SQLite relational index with the schema created."""
    index = RelationalIndex.from_url(MEMORY_DB_URL)
    await index.create_schema()
    yield index
    await index.close()


@pytest.fixture
def vectors() -> VectorSearchIndex:
    return VectorSearchIndex(InMemoryVectorBackend(), HashingEmbedder(256))


@pytest.fixture
def service(
    content_store: ContentStore, relational: RelationalIndex, vectors: VectorSearchIndex
) -> ComponentService:
    return ComponentService(content_store, relational, vectors, reindex_page_size=2)


@pytest.fixture
def make_input() -> Callable[..., dict[str, Any]]:
    """Build a create-component payload; defaults describe a ``toggle`` tsx file."""

    def _make(
        content: str = "v1-src",
        *,
        canonical_name: str | None = "toggle",
        description: str = "A toggle switch",
        file_type: str = "tsx",
        **extra: Any,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "description": description,
            "content": content,
            "kind": {"type": "file", "file_type": file_type},
            "canonical_name": canonical_name,
        }
        data.update(extra)
        return data

    return _make


@pytest.fixture
def publish_new(
    service: ComponentService, make_input: Callable[..., dict[str, Any]]
) -> Callable[..., Any]:
    """Create a component and publish it once; returns the PublishResult."""

    async def _publish(content: str = "v1-src", **kwargs: Any):
        created = await service.create(make_input(content, **kwargs))
        return await service.publish(created.component.id)

    return _publish
