"""Vector search index: embeddings of published components, keyed by component id."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from pydantic import BaseModel

from forgevault.models.errors import ComponentValidationError, EmbeddingUnavailableError
from forgevault.storage.embedding import Embedder


@dataclass
class VectorRecord:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


def _matches(metadata: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    """Equality filter; values may be plain or ``{"$eq": value}``."""
    for key, expected in (filters or {}).items():
        if isinstance(expected, Mapping):
            if "$eq" not in expected:
                raise ValueError(f"Unsupported filter operator for {key!r}: {expected!r}")
            expected = expected["$eq"]
        if metadata.get(key) != expected:
            return False
    return True


class VectorBackend(ABC):
    """Abstract vector index service."""

    @abstractmethod
    async def upsert(self, records: Sequence[VectorRecord]) -> None: ...

    @abstractmethod
    async def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int = 10,
        filter: Mapping[str, Any] | None = None,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        """Nearest records by cosine similarity, best first."""

    @abstractmethod
    async def delete_by_ids(self, ids: Iterable[str]) -> None: ...

    @abstractmethod
    async def get_by_ids(self, ids: Iterable[str]) -> list[VectorRecord]: ...


class InMemoryVectorBackend(VectorBackend):
    """Brute-force cosine similarity over a dict of records."""

    def __init__(self) -> None:
        self._records: dict[str, VectorRecord] = {}
        self._dimensions: int | None = None

    def __len__(self) -> int:
        return len(self._records)

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        for record in records:
            if self._dimensions is None:
                self._dimensions = len(record.values)
            elif len(record.values) != self._dimensions:
                raise ValueError(
                    f"Vector for {record.id} has {len(record.values)} dimensions, "
                    f"index expects {self._dimensions}"
                )
            self._records[record.id] = VectorRecord(
                id=record.id, values=list(record.values), metadata=dict(record.metadata)
            )

    async def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int = 10,
        filter: Mapping[str, Any] | None = None,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        candidates = [r for r in self._records.values() if _matches(r.metadata, filter)]
        if not candidates or top_k < 1:
            return []
        matrix = np.asarray([r.values for r in candidates], dtype=np.float64)
        query = np.asarray(vector, dtype=np.float64)
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"Query has {query.shape[0]} dimensions, index expects {matrix.shape[1]}"
            )
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(
                id=candidates[i].id,
                score=float(scores[i]),
                metadata=dict(candidates[i].metadata) if return_metadata else {},
            )
            for i in order
        ]

    async def delete_by_ids(self, ids: Iterable[str]) -> None:
        for record_id in ids:
            self._records.pop(record_id, None)

    async def get_by_ids(self, ids: Iterable[str]) -> list[VectorRecord]:
        return [self._records[i] for i in ids if i in self._records]


class ComponentVectorMetadata(BaseModel):
    """Filterable metadata stored with every component vector."""

    component_id: str
    canonical_name: str
    type: str
    file_type: str | None = None
    media_type: str | None = None
    description: str = ""
    latest_version: int
    semver: str | None = None
    creator: str | None = None

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


@dataclass
class SearchHit:
    component_id: str
    score: float
    metadata: ComponentVectorMetadata


class VectorSearchIndex:
    """Embeds, stores and searches component vectors."""

    def __init__(
        self,
        backend: VectorBackend,
        embedder: Embedder,
        *,
        sample_chars: int = 1000,
        default_limit: int = 10,
    ) -> None:
        self.backend = backend
        self.embedder = embedder
        self.sample_chars = sample_chars
        self.default_limit = default_limit

    def compose_text(self, description: str, content: bytes | str | None = None) -> str:
        """Embedding input: the description plus the first characters of the content."""
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="ignore")
        sample = (content or "")[: self.sample_chars]
        return f"{description}\n\n{sample}" if sample else description

    async def embed(self, text: str) -> list[float]:
        try:
            vectors = await self.embedder.embed([text])
        except EmbeddingUnavailableError:
            raise
        except Exception as exc:
            raise EmbeddingUnavailableError(f"Embedding failed: {exc}") from exc
        if not vectors or not vectors[0]:
            raise EmbeddingUnavailableError("Embedding model returned no vector")
        return vectors[0]

    async def embed_component(
        self, description: str, content: bytes | str | None = None
    ) -> list[float]:
        return await self.embed(self.compose_text(description, content))

    async def index_component(
        self, component_id: str, vector: Sequence[float], metadata: ComponentVectorMetadata
    ) -> None:
        await self.backend.upsert(
            [VectorRecord(id=component_id, values=list(vector), metadata=metadata.to_metadata())]
        )

    async def remove_component(self, component_id: str) -> None:
        await self.backend.delete_by_ids([component_id])

    async def search(
        self,
        query: str,
        *,
        type: str | None = None,
        file_type: str | None = None,
        media_type: str | None = None,
        limit: int | None = None,
        min_score: float = 0.0,
    ) -> list[SearchHit]:
        vector = await self.embed(query)
        filters = {
            key: {"$eq": value}
            for key, value in (("type", type), ("file_type", file_type), ("media_type", media_type))
            if value is not None
        }
        return await self.search_by_vector(
            vector, filters=filters, limit=limit, min_score=min_score
        )

    async def search_by_vector(
        self,
        vector: Sequence[float],
        *,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        min_score: float = 0.0,
        exclude: Iterable[str] = (),
    ) -> list[SearchHit]:
        if limit is None:
            limit = self.default_limit
        if limit < 1:
            raise ComponentValidationError("limit must be positive")
        excluded = set(exclude)
        matches = await self.backend.query(
            vector, top_k=limit + len(excluded), filter=filters or None, return_metadata=True
        )
        hits: list[SearchHit] = []
        for match in matches:
            # Threshold is applied here, after the ranked query
            if match.id in excluded or match.score < min_score:
                continue
            hits.append(
                SearchHit(
                    component_id=match.id,
                    score=match.score,
                    metadata=ComponentVectorMetadata.model_validate(match.metadata),
                )
            )
        return hits[:limit]

    async def find_similar(
        self, component_id: str, *, limit: int | None = None, min_score: float = 0.0
    ) -> list[SearchHit]:
        """Components closest to an indexed one, excluding itself."""
        vector = await self.get_vector(component_id)
        if vector is None:
            return []
        return await self.search_by_vector(
            vector, limit=limit, min_score=min_score, exclude=[component_id]
        )

    async def get_vector(self, component_id: str) -> list[float] | None:
        records = await self.backend.get_by_ids([component_id])
        return records[0].values if records else None

    async def get_metadata(self, component_id: str) -> ComponentVectorMetadata | None:
        records = await self.backend.get_by_ids([component_id])
        if not records:
            return None
        return ComponentVectorMetadata.model_validate(records[0].metadata)

    async def is_indexed(self, component_id: str) -> bool:
        return bool(await self.backend.get_by_ids([component_id]))
