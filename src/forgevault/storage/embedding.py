"""Embedding models used by the vector search index."""

from __future__ import annotations

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
import numpy as np

from forgevault.models.errors import EmbeddingUnavailableError

logger = logging.getLogger("forgevault.storage.embedding")

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class Embedder(ABC):
    """Turns text into fixed-length float vectors."""

    dimensions: int

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts`` in order. Raises :class:`EmbeddingUnavailableError`."""

    async def close(self) -> None:  # noqa: B027
        pass


class HashingEmbedder(Embedder):
    """Deterministic local embedder based on signed feature hashing.

    Tokens and token bigrams are hashed into a fixed number of buckets and
    the result is L2-normalized, so texts sharing vocabulary land close
    together under cosine similarity. Needs no network and no model.
    """

    def __init__(self, dimensions: int = 256) -> None:
        if dimensions < 8:
            raise ValueError("dimensions must be at least 8")
        self.dimensions = dimensions

    def vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dimensions, dtype=np.float64)
        tokens = _TOKEN_RE.findall(text.lower())
        features = tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:], strict=False)]
        for feature in features:
            value = int.from_bytes(
                hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest(), "little"
            )
            vec[value % self.dimensions] += -1.0 if value >> 63 else 1.0
        norm = np.linalg.norm(vec)
        return vec / norm if norm else vec

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return [self.vector(text).tolist() for text in texts]


class HttpEmbedder(Embedder):
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        model: str,
        api_key: str | None = None,
        dimensions: int | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dimensions = dimensions or 0
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        payload: dict[str, object] = {"model": self.model, "input": list(texts)}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            response = await self._client.post(
                f"{self.base_url}/embeddings", json=payload, headers=headers
            )
            response.raise_for_status()
            items = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [[float(x) for x in item["embedding"]] for item in items]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Embedding request to %s failed: %s", self.base_url, exc)
            raise EmbeddingUnavailableError(f"Embedding request failed: {exc}") from exc
        if len(vectors) != len(texts):
            raise EmbeddingUnavailableError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        return vectors

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
