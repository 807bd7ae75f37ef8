"""Identifier generation and parsing.

Three id shapes exist:

* component id, a random short token: ``3f9a-0c1e``
* version id, derived from a component id: ``3f9a-0c1e-v2``
* legacy asset id, derived from name, version and content: ``toggle-v2-9b1f04ad``
"""

from __future__ import annotations

import hashlib
import re
import uuid

ASSET_HASH_LENGTH = 8

_COMPONENT_ID_RE = re.compile(r"^[a-f0-9]{4}-[a-f0-9]{4}$")
_VERSION_ID_RE = re.compile(r"^([a-f0-9]{4}-[a-f0-9]{4})-v(\d+)$")
_ASSET_ID_RE = re.compile(r"^(.+)-v(\d+)-([a-f0-9]{4,})$")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def new_component_id() -> str:
    """Return a fresh random component id."""
    token = uuid.uuid4().hex
    return f"{token[:4]}-{token[4:8]}"


def version_id(component_id: str, version: int) -> str:
    if version < 1:
        raise ValueError(f"Version numbers start at 1, got {version}")
    return f"{component_id}-v{version}"


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumerics to ``-`` and trim the edges."""
    return _SLUG_STRIP_RE.sub("-", name.lower()).strip("-")


def content_hash(content: bytes | str) -> str:
    """SHA-256 hex digest of a payload."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def asset_id(canonical_name: str, version: int, digest: str) -> str:
    """Deterministic id for the flat asset model.

    Identical ``(name, version, content)`` tuples always map to the same id.
    """
    slug = slugify(canonical_name)
    if not slug:
        raise ValueError(f"Cannot derive an asset id from name {canonical_name!r}")
    if len(digest) < ASSET_HASH_LENGTH:
        raise ValueError("Content hash is too short")
    return f"{slug}-v{version}-{digest[:ASSET_HASH_LENGTH].lower()}"


def is_component_id(value: str) -> bool:
    return bool(_COMPONENT_ID_RE.match(value))


def is_version_id(value: str) -> bool:
    return bool(_VERSION_ID_RE.match(value))


def is_asset_id(value: str) -> bool:
    return bool(_ASSET_ID_RE.match(value)) and not is_version_id(value)


def looks_like_id(value: str) -> bool:
    return is_component_id(value) or is_version_id(value) or is_asset_id(value)


def parse_version_id(value: str) -> tuple[str, int] | None:
    """Split a version id into ``(component_id, version)``."""
    match = _VERSION_ID_RE.match(value)
    if match is None:
        return None
    return match.group(1), int(match.group(2))


def parse_asset_id(value: str) -> tuple[str, int, str] | None:
    """Split a legacy asset id into ``(name_slug, version, hash)``."""
    if is_version_id(value):
        return None
    match = _ASSET_ID_RE.match(value)
    if match is None:
        return None
    return match.group(1), int(match.group(2)), match.group(3)


def component_id_of(value: str) -> str | None:
    """Return the component id a component or version id refers to."""
    if is_component_id(value):
        return value
    parsed = parse_version_id(value)
    return parsed[0] if parsed else None
