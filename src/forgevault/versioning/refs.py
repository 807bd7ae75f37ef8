"""Reference-string parsing.

A reference is one of:

* an exact id (component, version or legacy asset id)
* ``name@ref`` where ``ref`` is a named pointer (``latest``, ``stable``, ...)
* ``name@1.2.3`` or ``name@^1.2`` (exact version or range)
* a bare ``name``, which means ``name@latest``
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from forgevault.versioning import semver
from forgevault.versioning.ids import looks_like_id

LATEST = "latest"
KNOWN_REFS = frozenset({"latest", "stable", "dev", "next", "canary", "beta", "alpha"})

T = TypeVar("T")


class RefKind(StrEnum):
    ID = "id"
    TAG = "tag"
    EXACT = "exact"
    RANGE = "range"


@dataclass(frozen=True)
class ParsedRef:
    raw: str
    kind: RefKind
    name: str
    selector: str

    def __str__(self) -> str:
        if self.kind is RefKind.ID:
            return self.name
        return f"{self.name}@{self.selector}"


def parse_ref(ref: str) -> ParsedRef:
    """Classify a reference string.

    Ids are recognized by shape only; callers that fail to find an id
    should fall back to :func:`parse_named_ref` on the same string.
    """
    text = ref.strip()
    if not text:
        raise ValueError("Reference must not be empty")
    if "@" not in text and looks_like_id(text):
        return ParsedRef(raw=ref, kind=RefKind.ID, name=text, selector="")
    return parse_named_ref(text)


def parse_named_ref(ref: str) -> ParsedRef:
    """Parse ``name[@selector]``, splitting on the last ``@``."""
    text = ref.strip()
    name, sep, selector = text.rpartition("@")
    if not sep:
        name, selector = text, LATEST
    name, selector = name.strip(), selector.strip()
    if not name:
        raise ValueError(f"Reference {ref!r} has no name")
    if not selector:
        return ParsedRef(raw=ref, kind=RefKind.TAG, name=name, selector=LATEST)
    if selector.lower() in KNOWN_REFS:
        return ParsedRef(raw=ref, kind=RefKind.TAG, name=name, selector=selector.lower())
    if semver.is_valid_version(selector):
        return ParsedRef(raw=ref, kind=RefKind.EXACT, name=name, selector=selector.lstrip("v="))
    if semver.is_valid_range(selector):
        return ParsedRef(raw=ref, kind=RefKind.RANGE, name=name, selector=selector)
    return ParsedRef(raw=ref, kind=RefKind.TAG, name=name, selector=selector)


def select_version(
    parsed: ParsedRef,
    candidates: Sequence[T],
    semver_of: Callable[[T], str],
) -> T | None:
    """Pick the candidate an EXACT or RANGE reference points at.

    ``candidates`` must be in chronological order; when several share the
    winning semver (same name reused by unrelated components) the most
    recent one wins.
    """
    if parsed.kind is RefKind.EXACT:
        target = semver.parse_version(parsed.selector)
        matches = [c for c in candidates if semver.parse_version(semver_of(c)) == target]
        return matches[-1] if matches else None
    if parsed.kind is RefKind.RANGE:
        compiled = semver.parse_range(parsed.selector)
        best: T | None = None
        best_version = None
        for candidate in candidates:
            version = semver.parse_version(semver_of(candidate))
            if version is None or not compiled.test(version):
                continue
            if best_version is None or version >= best_version:
                best, best_version = candidate, version
        return best
    raise ValueError(f"select_version does not handle {parsed.kind} references")
