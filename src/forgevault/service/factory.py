"""Wire the stores and services from :class:`Settings`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.engine import make_url

from forgevault.service.components import ComponentService
from forgevault.service.janitor import DraftJanitor
from forgevault.settings import Settings
from forgevault.storage.blob import BlobBackend, InMemoryBlobBackend
from forgevault.storage.content_store import ContentStore
from forgevault.storage.embedding import Embedder, HashingEmbedder, HttpEmbedder
from forgevault.storage.filesystem import FilesystemBlobBackend
from forgevault.storage.relational import RelationalIndex
from forgevault.storage.vector import InMemoryVectorBackend, VectorSearchIndex

logger = logging.getLogger("forgevault.service.factory")


@dataclass
class Registry:
    """A fully wired registry and the resources it owns."""

    settings: Settings
    content: ContentStore
    index: RelationalIndex
    vectors: VectorSearchIndex
    service: ComponentService
    janitor: DraftJanitor | None = None

    async def close(self) -> None:
        if self.janitor is not None:
            await self.janitor.stop()
        await self.vectors.embedder.close()
        await self.index.close()
        await self.content.backend.close()


def _blob_backend(settings: Settings) -> BlobBackend:
    if settings.blob_backend == "memory":
        return InMemoryBlobBackend()
    return FilesystemBlobBackend(settings.blob_root)


def _embedder(settings: Settings) -> Embedder:
    if settings.embedding_url:
        return HttpEmbedder(
            settings.embedding_url,
            model=settings.embedding_model,
            api_key=settings.embedding_api_key,
            dimensions=settings.embedding_dimensions,
            timeout=settings.embedding_timeout_seconds,
        )
    return HashingEmbedder(settings.embedding_dimensions)


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


async def build_registry(settings: Settings | None = None) -> Registry:
    """Create every store, the service and (if configured) the draft janitor.

    The vector backend lives in memory, so with ``reindex_on_startup`` the
    content store is replayed once to warm it.
    """
    settings = settings or Settings()
    content = ContentStore(_blob_backend(settings), settings.base_url)

    _ensure_sqlite_dir(settings.database_url)
    index = RelationalIndex.from_url(settings.database_url)
    await index.create_schema()

    vectors = VectorSearchIndex(
        InMemoryVectorBackend(),
        _embedder(settings),
        sample_chars=settings.embedding_sample_chars,
        default_limit=settings.search_default_limit,
    )
    service = ComponentService(
        content,
        index,
        vectors,
        draft_max_age_hours=settings.draft_max_age_hours,
        reindex_page_size=settings.reindex_page_size,
    )
    registry = Registry(
        settings=settings, content=content, index=index, vectors=vectors, service=service
    )

    if settings.reindex_on_startup:
        report = await service.reindex()
        if report.errors:
            logger.warning("Startup reindex finished with %d errors", len(report.errors))

    if settings.draft_cleanup_interval_seconds > 0:
        registry.janitor = DraftJanitor(
            service,
            max_age_hours=settings.draft_max_age_hours,
            interval_seconds=settings.draft_cleanup_interval_seconds,
        )
        registry.janitor.start()

    logger.info(
        "Registry ready (blobs=%s, database=%s)",
        settings.blob_backend,
        make_url(settings.database_url).render_as_string(hide_password=True),
    )
    return registry
