"""Result types returned by the component service."""

from __future__ import annotations

from dataclasses import dataclass, field

from forgevault.models.component import Component, Draft, Version
from forgevault.models.errors import StepFailure
from forgevault.versioning.refs import RefKind


@dataclass
class DraftResult:
    component: Component
    draft: Draft


@dataclass
class PublishResult:
    component: Component
    version: Version
    warnings: list[str] = field(default_factory=list)


@dataclass
class ComponentDetail:
    """A component with its draft and/or the version being looked at."""

    component: Component
    draft: Draft | None = None
    version: Version | None = None

    @property
    def current(self) -> Draft | Version | None:
        """The working copy: the draft if one exists, else the version."""
        return self.draft or self.version


@dataclass
class Resolution:
    """What a reference string points at."""

    ref: str
    kind: RefKind
    canonical_name: str
    component_id: str
    version_id: str | None = None
    version: int | None = None
    semver: str | None = None
    content_url: str = ""
    manifest_url: str = ""


@dataclass
class DeleteResult:
    component_id: str
    deleted: bool
    failed_steps: list[StepFailure] = field(default_factory=list)


@dataclass
class ItemResult:
    """Outcome of one item in a batch operation."""

    id: str
    ok: bool
    error: str | None = None
    action: str | None = None


@dataclass
class BatchResult:
    results: list[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [r.id for r in self.results if r.ok]

    @property
    def failed(self) -> list[ItemResult]:
        return [r for r in self.results if not r.ok]


@dataclass
class CleanupReport:
    deleted: list[str] = field(default_factory=list)
    drafts_dropped: list[str] = field(default_factory=list)
    errors: list[ItemResult] = field(default_factory=list)


@dataclass
class ReindexReport:
    """Progress of a (possibly partial) rebuild of the derived stores.

    ``cursor`` is None once the whole content store has been replayed;
    otherwise pass it back to continue from the next page.
    """

    scanned: int = 0
    indexed: int = 0
    versions: int = 0
    vectors: int = 0
    pages: int = 0
    errors: list[ItemResult] = field(default_factory=list)
    cursor: str | None = None

    @property
    def done(self) -> bool:
        return self.cursor is None


@dataclass
class DependencyReindexReport:
    scanned: int = 0
    updated: int = 0
    skipped: int = 0
    pages: int = 0
    errors: list[ItemResult] = field(default_factory=list)
    cursor: str | None = None

    @property
    def done(self) -> bool:
        return self.cursor is None
