"""Filesystem blob backend: stores blobs as files under a root directory.

Payloads live under ``<root>/objects/<key>``; the content type, cache
control and user metadata of each object live in a JSON sidecar under
``<root>/meta/<key>.json``.
"""

from __future__ import annotations

import builtins
import json
import os
import tempfile
from datetime import datetime
from pathlib import Path

from forgevault.storage.blob import (
    CACHE_MUTABLE,
    DEFAULT_CONTENT_TYPE,
    BlobBackend,
    BlobExistsError,
    BlobHead,
    BlobListing,
    BlobObject,
    paginate,
    validate_key,
)


class FilesystemBlobBackend(BlobBackend):
    """Store blobs on the local filesystem."""

    def __init__(self, root: str | Path = ".forgevault/blobs") -> None:
        self.root = Path(root)
        self._objects = self.root / "objects"
        self._meta = self.root / "meta"
        self._objects.mkdir(parents=True, exist_ok=True)
        self._meta.mkdir(parents=True, exist_ok=True)

    def _object_path(self, key: str) -> Path:
        return self._objects.joinpath(*validate_key(key).split("/"))

    def _meta_path(self, key: str) -> Path:
        path = self._meta.joinpath(*validate_key(key).split("/"))
        return path.with_name(path.name + ".json")

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
        path = self._object_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        if overwrite:
            _atomic_write(path, data)
        else:
            try:
                with path.open("xb") as fh:
                    fh.write(data)
            except FileExistsError as exc:
                raise BlobExistsError(key) from exc
        head = BlobHead(
            key=key,
            size=len(data),
            content_type=content_type,
            cache_control=cache_control,
            metadata=dict(metadata or {}),
        )
        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        sidecar = {
            "content_type": head.content_type,
            "cache_control": head.cache_control,
            "metadata": head.metadata,
            "uploaded_at": head.uploaded_at.isoformat(),
        }
        _atomic_write(meta_path, json.dumps(sidecar).encode("utf-8"))
        return head

    async def get(self, key: str) -> BlobObject | None:
        head = await self.head(key)
        if head is None:
            return None
        try:
            data = self._object_path(key).read_bytes()
        except FileNotFoundError:
            return None
        return BlobObject(head=head, data=data)

    async def head(self, key: str) -> BlobHead | None:
        path = self._object_path(key)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        head = BlobHead(key=key, size=stat.st_size)
        meta_path = self._meta_path(key)
        if meta_path.exists():
            sidecar = json.loads(meta_path.read_text(encoding="utf-8"))
            head.content_type = sidecar.get("content_type", DEFAULT_CONTENT_TYPE)
            head.cache_control = sidecar.get("cache_control", CACHE_MUTABLE)
            head.metadata = sidecar.get("metadata", {})
            if "uploaded_at" in sidecar:
                head.uploaded_at = datetime.fromisoformat(sidecar["uploaded_at"])
        return head

    async def delete(self, key: str) -> None:
        self._object_path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)

    async def list(
        self,
        prefix: str = "",
        *,
        cursor: str | None = None,
        limit: int = 1000,
        delimiter: str | None = None,
    ) -> BlobListing:
        keys = builtins.list(self._iter_keys())
        return paginate(keys, prefix, cursor, limit, delimiter)

    def _iter_keys(self):
        for dirpath, _dirnames, filenames in os.walk(self._objects):
            base = Path(dirpath).relative_to(self._objects)
            for name in filenames:
                if name.startswith(".tmp-"):
                    continue
                yield (base / name).as_posix() if base.parts else name


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
