"""Heuristic extraction of component references from source text.

Two syntaxes are recognized:

* relative imports of a sibling component, ``import X from './toggle-v2-9b1f04ad'``
  (also ``export ... from``, dynamic ``import()`` and ``require()``)
* custom-element tags, ``<forge-toggle ...>``

Each candidate is then resolved against the registry and classified as
resolved (found and declared), undeclared (found, not declared) or missing.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from forgevault.versioning.ids import slugify

SCANNABLE_FILE_TYPES = frozenset({"tsx", "jsx", "ts", "js", "html", "vue", "svelte"})

# Hyphenated names reserved by HTML/SVG/MathML; never custom elements
RESERVED_TAGS = frozenset(
    {
        "annotation-xml",
        "color-profile",
        "font-face",
        "font-face-src",
        "font-face-uri",
        "font-face-format",
        "font-face-name",
        "missing-glyph",
    }
)

# Local module names generated alongside components, not components themselves
BUILTIN_MODULES = frozenset({"index", "styles", "types", "utils", "constants", "helpers"})

_IMPORT_RE = re.compile(
    r"""(?:import|export)\s+(?:[\w*{},\s]+?\s+from\s+)?['"]([^'"]+)['"]"""
    r"""|import\(\s*['"]([^'"]+)['"]\s*\)"""
    r"""|require\(\s*['"]([^'"]+)['"]\s*\)"""
)
_RELATIVE_RE = re.compile(
    r"^\./([A-Za-z0-9][A-Za-z0-9_@.-]*?)(?:\.(?:tsx|jsx|ts|js|mjs|css|html|vue|svelte))?$"
)
_TAG_RE = re.compile(r"<([a-z][a-z0-9]*(?:-[a-z0-9]+)+)(?=[\s/>])")

Resolver = Callable[[str], Awaitable[str | None]]


class CandidateSource(StrEnum):
    IMPORT = "import"
    TAG = "tag"


class DependencyStatus(StrEnum):
    RESOLVED = "resolved"
    UNDECLARED = "undeclared"
    MISSING = "missing"


@dataclass(frozen=True)
class DependencyCandidate:
    reference: str
    source: CandidateSource
    line: int


@dataclass
class DependencyFinding:
    reference: str
    source: CandidateSource
    line: int
    status: DependencyStatus
    component_id: str | None = None


@dataclass
class DependencyReport:
    findings: list[DependencyFinding] = field(default_factory=list)

    def _with(self, status: DependencyStatus) -> list[DependencyFinding]:
        return [f for f in self.findings if f.status is status]

    @property
    def resolved(self) -> list[DependencyFinding]:
        return self._with(DependencyStatus.RESOLVED)

    @property
    def undeclared(self) -> list[DependencyFinding]:
        return self._with(DependencyStatus.UNDECLARED)

    @property
    def missing(self) -> list[DependencyFinding]:
        return self._with(DependencyStatus.MISSING)

    @property
    def component_ids(self) -> list[str]:
        """Sorted ids of every referenced component found in the registry."""
        return sorted({f.component_id for f in self.findings if f.component_id})

    @property
    def has_warnings(self) -> bool:
        return any(f.status is not DependencyStatus.RESOLVED for f in self.findings)


def is_scannable(file_type: str | None) -> bool:
    return (file_type or "").lower() in SCANNABLE_FILE_TYPES


def _own_names(own: str | Iterable[str] | None) -> set[str]:
    if own is None:
        return set()
    names = [own] if isinstance(own, str) else list(own)
    result: set[str] = set()
    for name in names:
        if name:
            result.add(name.lower())
            result.add(slugify(name))
    return result


def scan_candidates(
    source_text: str, own: str | Iterable[str] | None = None
) -> list[DependencyCandidate]:
    """Every distinct reference in ``source_text``, in order of first appearance."""
    excluded = _own_names(own)
    seen: set[str] = set()
    found: list[tuple[int, DependencyCandidate]] = []

    def add(reference: str, source: CandidateSource, offset: int) -> None:
        if reference.lower() in excluded or reference in seen:
            return
        seen.add(reference)
        line = source_text.count("\n", 0, offset) + 1
        found.append((offset, DependencyCandidate(reference, source, line)))

    for match in _IMPORT_RE.finditer(source_text):
        path = next(group for group in match.groups() if group is not None)
        relative = _RELATIVE_RE.match(path)
        if relative is None:
            continue
        reference = relative.group(1)
        if reference.lower() in BUILTIN_MODULES:
            continue
        add(reference, CandidateSource.IMPORT, match.start())

    for match in _TAG_RE.finditer(source_text):
        tag = match.group(1)
        if tag in RESERVED_TAGS:
            continue
        add(tag, CandidateSource.TAG, match.start())

    return [candidate for _, candidate in sorted(found, key=lambda item: item[0])]


async def extract_dependencies(
    source_text: str,
    own: str | Iterable[str] | None,
    resolve: Resolver,
    *,
    declared: Iterable[str] = (),
    own_id: str | None = None,
) -> DependencyReport:
    """Scan ``source_text`` and classify each reference against the registry.

    ``resolve`` maps a reference (name, tag, component id or version id) to
    a component id, or None when nothing matches.
    """
    declared_ids = set(declared)
    report = DependencyReport()
    for candidate in scan_candidates(source_text, own):
        component_id = await resolve(candidate.reference)
        if component_id is not None and component_id == own_id:
            continue
        if component_id is None:
            status = DependencyStatus.MISSING
        elif component_id in declared_ids:
            status = DependencyStatus.RESOLVED
        else:
            status = DependencyStatus.UNDECLARED
        report.findings.append(
            DependencyFinding(
                reference=candidate.reference,
                source=candidate.source,
                line=candidate.line,
                status=status,
                component_id=component_id,
            )
        )
    return report
