"""Blob backends: the raw key/value layer under the content store."""

from __future__ import annotations

import builtins
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from forgevault.models.component import utcnow

CACHE_MUTABLE = "no-cache"
CACHE_IMMUTABLE = "public, max-age=31536000, immutable"

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class BlobExistsError(FileExistsError):
    """A create-only put found the key already present."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Blob already exists: {key}")
        self.key = key


@dataclass
class BlobHead:
    key: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    cache_control: str = CACHE_MUTABLE
    metadata: dict[str, str] = field(default_factory=dict)
    uploaded_at: datetime = field(default_factory=utcnow)


@dataclass
class BlobObject:
    head: BlobHead
    data: bytes

    @property
    def key(self) -> str:
        return self.head.key

    def text(self, encoding: str = "utf-8") -> str:
        return self.data.decode(encoding)


@dataclass
class BlobListing:
    """One page of a prefix listing.

    With a delimiter, keys that continue past it are rolled up into
    ``prefixes`` (one entry per distinct ``prefix + segment + delimiter``).
    """

    keys: list[str] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)
    cursor: str | None = None
    truncated: bool = False


def validate_key(key: str) -> str:
    if not key or key.startswith("/") or "\\" in key:
        raise ValueError(f"Invalid blob key: {key!r}")
    if any(part in ("", ".", "..") for part in key.split("/")):
        raise ValueError(f"Invalid blob key: {key!r}")
    return key


def paginate(
    keys: Iterable[str],
    prefix: str,
    cursor: str | None,
    limit: int,
    delimiter: str | None,
) -> BlobListing:
    """Page through sorted ``keys``; the cursor is the last entry returned."""
    if limit < 1:
        raise ValueError("limit must be positive")
    listing = BlobListing()
    emitted = 0
    last: str | None = None
    for key in sorted(keys):
        if not key.startswith(prefix):
            continue
        entry, rolled_up = key, False
        if delimiter:
            idx = key.find(delimiter, len(prefix))
            if idx >= 0:
                entry, rolled_up = key[: idx + len(delimiter)], True
        if cursor is not None and entry <= cursor:
            continue
        if entry == last:
            continue
        if emitted == limit:
            listing.truncated = True
            break
        if rolled_up:
            listing.prefixes.append(entry)
        else:
            listing.keys.append(entry)
        last = entry
        emitted += 1
    listing.cursor = last if listing.truncated else None
    return listing


class BlobBackend(ABC):
    """Abstract key/value blob storage."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
        cache_control: str = CACHE_MUTABLE,
        metadata: dict[str, str] | None = None,
        overwrite: bool = True,
    ) -> BlobHead:
        """Store ``data`` under ``key``.

        With ``overwrite=False`` the put is create-only and raises
        :class:`BlobExistsError` if the key is taken.
        """

    @abstractmethod
    async def get(self, key: str) -> BlobObject | None: ...

    @abstractmethod
    async def head(self, key: str) -> BlobHead | None: ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is not an error."""

    @abstractmethod
    async def list(
        self,
        prefix: str = "",
        *,
        cursor: str | None = None,
        limit: int = 1000,
        delimiter: str | None = None,
    ) -> BlobListing: ...

    async def exists(self, key: str) -> bool:
        return await self.head(key) is not None

    async def close(self) -> None:  # noqa: B027
        pass


class InMemoryBlobBackend(BlobBackend):
    """Dict-backed blob storage for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._objects: dict[str, BlobObject] = {}

    async def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
        cache_control: str = CACHE_MUTABLE,
        metadata: dict[str, str] | None = None,
        overwrite: bool = True,
    ) -> BlobHead:
        validate_key(key)
        if not overwrite and key in self._objects:
            raise BlobExistsError(key)
        head = BlobHead(
            key=key,
            size=len(data),
            content_type=content_type,
            cache_control=cache_control,
            metadata=dict(metadata or {}),
        )
        self._objects[key] = BlobObject(head=head, data=bytes(data))
        return head

    async def get(self, key: str) -> BlobObject | None:
        return self._objects.get(key)

    async def head(self, key: str) -> BlobHead | None:
        obj = self._objects.get(key)
        return obj.head if obj else None

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    async def list(
        self,
        prefix: str = "",
        *,
        cursor: str | None = None,
        limit: int = 1000,
        delimiter: str | None = None,
    ) -> BlobListing:
        return paginate(builtins.list(self._objects), prefix, cursor, limit, delimiter)
