"""Component service: the draft/publish state machine over the three stores.

Every write goes Content Store first, then the relational index, then the
vector index. The content store write is the commit point: if it fails
nothing else is touched, and if a later step fails the caller gets a
:class:`PartialFailureError` naming the steps that ``reindex`` will repair.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from forgevault.dependencies.extractor import DependencyReport, extract_dependencies
from forgevault.dependencies.graph import DependencyGraph
from forgevault.models.component import (
    ArtifactKind,
    Component,
    ComponentStatus,
    MediaAsset,
    Provenance,
    Ref,
    Version,
    guess_mime_type,
    utcnow,
)
from forgevault.models.errors import (
    ComponentValidationError,
    DraftConflictError,
    DraftRequiredError,
    EmbeddingUnavailableError,
    NotFoundError,
    PartialFailureError,
    RegistryError,
    StepFailure,
    StorageError,
)
from forgevault.models.manifest import ComponentHeader, DraftManifest, VersionManifest
from forgevault.service.projections import (
    component_from_snapshot,
    draft_from_manifest,
    vector_metadata,
    version_from_manifest,
)
from forgevault.service.reindex import Reindexer
from forgevault.service.results import (
    BatchResult,
    CleanupReport,
    ComponentDetail,
    DeleteResult,
    DependencyReindexReport,
    DraftResult,
    ItemResult,
    PublishResult,
    ReindexReport,
    Resolution,
)
from forgevault.storage.content_store import ContentStore
from forgevault.storage.relational import ComponentFilter, RelationalIndex
from forgevault.storage.vector import SearchHit, VectorSearchIndex
from forgevault.versioning import semver
from forgevault.versioning.chain import VersionChain, build_version_chain
from forgevault.versioning.ids import (
    component_id_of,
    content_hash,
    is_component_id,
    new_component_id,
    parse_asset_id,
    parse_version_id,
    slugify,
)
from forgevault.versioning.refs import (
    KNOWN_REFS,
    LATEST,
    ParsedRef,
    RefKind,
    parse_named_ref,
    parse_ref,
    select_version,
)

logger = logging.getLogger("forgevault.service.components")

MAX_DERIVED_NAME_LENGTH = 30
DEFAULT_CANONICAL_NAME = "component"
_ID_ATTEMPTS = 5

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def _non_blank(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class CreateComponentInput(BaseModel):
    """Everything needed to create a component and its first draft."""

    description: str
    content: bytes | str
    kind: ArtifactKind
    canonical_name: str | None = None
    mime_type: str | None = None
    creator: str | None = None
    provenance: Provenance = Field(default_factory=Provenance)
    metadata: dict[str, Any] = {}
    dependencies: list[str] = []

    @field_validator("description")
    @classmethod
    def _require_description(cls, value: str) -> str | None:
        return _non_blank(value)


class UpdateDraftInput(BaseModel):
    """A draft overwrite. Fields left as None inherit from the current draft."""

    content: bytes | str
    description: str | None = None
    mime_type: str | None = None
    provenance: Provenance | None = None
    metadata: dict[str, Any] | None = None
    dependencies: list[str] | None = None
    expected_revision: int | None = Field(default=None, ge=0)

    @field_validator("description")
    @classmethod
    def _check_description(cls, value: str | None) -> str | None:
        return _non_blank(value)


def _coerce(model_cls: type[M], data: M | Mapping[str, Any]) -> M:
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ComponentValidationError(f"Invalid {model_cls.__name__}: {details}") from exc


def _payload(content: bytes | str) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(item for item in items if item))


def canonical_name_for(name: str | None, description: str) -> str:
    """The given name, or a slug of the description when none was given."""
    if name is not None and name.strip():
        name = name.strip()
        if "@" in name:
            raise ComponentValidationError(f"Canonical name {name!r} must not contain '@'")
        return name
    slug = slugify(description)[:MAX_DERIVED_NAME_LENGTH].strip("-")
    return slug or DEFAULT_CANONICAL_NAME


# ---------------------------------------------------------------------------
# ComponentService
# ---------------------------------------------------------------------------


class ComponentService:
    """Create, draft, publish, resolve, search and delete components."""

    def __init__(
        self,
        content: ContentStore,
        index: RelationalIndex,
        vectors: VectorSearchIndex,
        *,
        draft_max_age_hours: int = 48,
        reindex_page_size: int = 100,
    ) -> None:
        self.content = content
        self.index = index
        self.vectors = vectors
        self.draft_max_age_hours = draft_max_age_hours
        self._reindexer = Reindexer(
            content,
            index,
            vectors,
            resolve_reference=self.lookup_component_id,
            page_size=reindex_page_size,
        )

    # -- helpers -------------------------------------------------------------

    async def _commit(self, action: str, component_id: str, step: Awaitable[T]) -> T:
        """Run a content-store write; anything but a registry error becomes StorageError."""
        try:
            return await step
        except RegistryError:
            raise
        except Exception as exc:
            logger.error("%s failed for %s: %s", action, component_id, exc)
            raise StorageError(
                f"{action} failed for {component_id}: {exc}", component_id=component_id
            ) from exc

    @staticmethod
    def _partial_failure(
        operation: str, component_id: str, failures: list[StepFailure], result: Any
    ) -> PartialFailureError:
        for failure in failures:
            logger.error(
                "%s of %s: step %s failed in %s store: %s",
                operation,
                component_id,
                failure.step,
                failure.store,
                failure.message,
            )
        steps = ", ".join(f.step for f in failures)
        return PartialFailureError(
            f"{operation} of {component_id} incomplete, failed steps: {steps}",
            failures,
            component_id=component_id,
            result=result,
        )

    async def _new_component_id(self) -> str:
        for _ in range(_ID_ATTEMPTS):
            candidate = new_component_id()
            if await self.index.get_component(candidate) is None and not (
                await self.content.list_version_numbers(candidate)
                or await self.content.draft_exists(candidate)
            ):
                return candidate
        raise StorageError("Could not allocate an unused component id")

    async def _load_component(self, component_id: str) -> Component:
        if not is_component_id(component_id):
            raise NotFoundError(f"Component {component_id} not found", component_id=component_id)
        component = await self.index.get_component(component_id)
        if component is not None:
            return component
        snapshot = await self.content.load_snapshot(component_id)
        if snapshot is None:
            raise NotFoundError(f"Component {component_id} not found", component_id=component_id)
        logger.warning(
            "Component %s is not indexed; reading it from the content store", component_id
        )
        return component_from_snapshot(snapshot)

    async def _current_version_number(self, component: Component) -> int:
        """Highest version number either store knows about."""
        stored = await self.content.list_version_numbers(component.id)
        return max([component.latest_version, *stored])

    async def _load_version(self, component_id: str, number: int) -> Version | None:
        version = await self.index.get_version_by_number(component_id, number)
        if version is not None:
            return version
        manifest = await self.content.get_version_manifest(component_id, number)
        return version_from_manifest(manifest, self.content) if manifest else None

    async def _copy_forward(self, component: Component) -> DraftManifest | None:
        """Seed the draft slot with the latest version. None if nothing is published."""
        number = await self._current_version_number(component)
        if number == 0:
            return None
        manifest = await self.content.get_version_manifest(component.id, number)
        payload = await self.content.get_version_content(component.id, number)
        if manifest is None or payload is None:
            raise StorageError(
                f"Version {number} of {component.id} is incomplete in the content store",
                component_id=component.id,
            )
        draft = DraftManifest(
            component=manifest.component,
            description=manifest.description,
            mime_type=manifest.mime_type,
            size=len(payload),
            content_hash=manifest.content_hash or content_hash(payload),
            revision=1,
            provenance=manifest.provenance,
            metadata=manifest.metadata,
            dependencies=manifest.dependencies,
        )
        await self._commit(
            "Copy-forward", component.id, self.content.store_draft(component.id, payload, draft)
        )
        logger.info("Copied version %d of %s into its draft slot", number, component.id)
        return draft

    # -- create / draft ------------------------------------------------------

    async def create(self, data: CreateComponentInput | Mapping[str, Any]) -> DraftResult:
        """Create a component holding a first draft (revision 1)."""
        data = _coerce(CreateComponentInput, data)
        canonical_name = canonical_name_for(data.canonical_name, data.description)
        component_id = await self._new_component_id()
        payload = _payload(data.content)
        now = utcnow()

        header = ComponentHeader(
            id=component_id,
            canonical_name=canonical_name,
            kind=data.kind,
            creator=data.creator,
            created_at=now,
        )
        manifest = DraftManifest(
            component=header,
            description=data.description,
            mime_type=data.mime_type or guess_mime_type(data.kind),
            size=len(payload),
            content_hash=content_hash(payload),
            revision=1,
            updated_at=now,
            provenance=data.provenance,
            metadata=data.metadata,
            dependencies=_unique(data.dependencies),
        )
        await self._commit(
            "Store draft", component_id, self.content.store_draft(component_id, payload, manifest)
        )

        component = Component(
            id=component_id,
            canonical_name=canonical_name,
            status=ComponentStatus.DRAFT,
            kind=data.kind,
            description=data.description,
            latest_version=0,
            has_draft=True,
            creator=data.creator,
            created_at=now,
            updated_at=now,
        )
        result = DraftResult(component=component, draft=draft_from_manifest(manifest, self.content))
        try:
            await self.index.create_component(component)
        except Exception as exc:
            raise self._partial_failure(
                "Create",
                component_id,
                [StepFailure(step="create_component", store="relational", message=str(exc))],
                result,
            ) from exc
        logger.info("Created component %s (%s)", component_id, canonical_name)
        return result

    async def update_draft(
        self, component_id: str, data: UpdateDraftInput | Mapping[str, Any]
    ) -> DraftResult:
        """Overwrite the draft, copying the latest version forward if there is none.

        With ``expected_revision`` set the write only succeeds if the draft is
        still at that revision (0 meaning no draft); otherwise last write wins.
        """
        data = _coerce(UpdateDraftInput, data)
        component = await self._load_component(component_id)
        current = await self.content.get_draft_manifest(component_id)

        if data.expected_revision is not None:
            actual = current.revision if current else 0
            if actual != data.expected_revision:
                raise DraftConflictError(
                    f"Draft of {component_id} is at revision {actual}, "
                    f"not {data.expected_revision}",
                    component_id=component_id,
                    current_revision=actual,
                )

        base = current or await self._copy_forward(component)
        payload = _payload(data.content)
        if base is not None:
            header = base.component
            description = data.description or base.description
            mime_type = data.mime_type or base.mime_type
            provenance = data.provenance or base.provenance
            metadata = base.metadata if data.metadata is None else data.metadata
            dependencies = base.dependencies if data.dependencies is None else data.dependencies
            revision = base.revision + 1
        else:
            header = ComponentHeader(
                id=component.id,
                canonical_name=component.canonical_name,
                kind=component.kind,
                creator=component.creator,
                created_at=component.created_at,
            )
            description = data.description or component.description
            mime_type = data.mime_type or guess_mime_type(component.kind)
            provenance = data.provenance or Provenance()
            metadata = data.metadata or {}
            dependencies = data.dependencies or []
            revision = 1

        manifest = DraftManifest(
            component=header,
            description=description,
            mime_type=mime_type,
            size=len(payload),
            content_hash=content_hash(payload),
            revision=revision,
            provenance=provenance,
            metadata=metadata,
            dependencies=_unique(dependencies),
        )
        await self._commit(
            "Store draft", component_id, self.content.store_draft(component_id, payload, manifest)
        )

        updated = component.model_copy(
            update={
                "has_draft": True,
                "description": description,
                "updated_at": manifest.updated_at,
            }
        )
        result = DraftResult(component=updated, draft=draft_from_manifest(manifest, self.content))
        try:
            await self.index.update_component_draft(component_id, True, description)
        except Exception as exc:
            raise self._partial_failure(
                "Draft update",
                component_id,
                [StepFailure(step="update_component_draft", store="relational", message=str(exc))],
                result,
            ) from exc
        logger.info("Updated draft of %s (revision %d)", component_id, revision)
        return result

    # -- publish -------------------------------------------------------------

    async def publish(
        self,
        component_id: str,
        bump: semver.BumpKind | str = semver.BumpKind.PATCH,
        changelog: str | None = None,
    ) -> PublishResult:
        """Turn the draft into the next immutable version."""
        try:
            bump = semver.BumpKind(bump)
        except ValueError as exc:
            raise ComponentValidationError(
                f"Unknown bump kind {bump!r}", component_id=component_id
            ) from exc
        component = await self._load_component(component_id)
        draft = await self.content.get_draft_manifest(component_id)
        payload = await self.content.get_draft_content(component_id) if draft else None
        if draft is None or payload is None:
            raise DraftRequiredError(
                f"Component {component_id} has no draft to publish", component_id=component_id
            )

        previous_number = await self._current_version_number(component)
        previous = None
        if previous_number:
            previous = await self._load_version(component_id, previous_number)
            if previous is None:
                raise StorageError(
                    f"Version {previous_number} of {component_id} cannot be read",
                    component_id=component_id,
                )
        number = previous_number + 1
        warnings: list[str] = []

        # 1. embedding, non-fatal
        embedding: list[float] | None = None
        sample = None if isinstance(component.kind, MediaAsset) else payload
        try:
            embedding = await self.vectors.embed_component(draft.description, sample)
        except EmbeddingUnavailableError as exc:
            logger.warning("Publishing %s without an embedding: %s", component_id, exc.message)
            warnings.append(f"{exc.kind}: {exc.message}")

        manifest = VersionManifest(
            component=draft.component,
            version=number,
            semver=semver.bump(previous.semver if previous else None, bump),
            parent_version_id=previous.id if previous else None,
            description=draft.description,
            changelog=changelog,
            mime_type=draft.mime_type,
            size=len(payload),
            content_hash=content_hash(payload),
            provenance=draft.provenance,
            metadata=draft.metadata,
            dependencies=draft.dependencies,
            embedding=embedding,
        )

        # 2. commit point
        await self._commit(
            "Store version",
            component_id,
            self.content.store_version(component_id, number, payload, manifest),
        )

        version = version_from_manifest(manifest, self.content)
        published = component.model_copy(
            update={
                "status": ComponentStatus.PUBLISHED,
                "latest_version": max(component.latest_version, number),
                "has_draft": False,
                "description": draft.description,
                "updated_at": manifest.created_at,
            }
        )
        result = PublishResult(component=published, version=version, warnings=warnings)
        failures: list[StepFailure] = []

        # 3. the draft blob
        try:
            await self.content.delete_draft(component_id)
        except Exception as exc:
            failures.append(StepFailure(step="delete_draft", store="content", message=str(exc)))

        # 4. relational transaction
        try:
            await self.index.publish_component(component_id, version, description=draft.description)
        except Exception as exc:
            failures.append(
                StepFailure(step="publish_component", store="relational", message=str(exc))
            )

        # 5. vector record
        if embedding is not None:
            try:
                await self.vectors.index_component(
                    component_id, embedding, vector_metadata(published, version)
                )
            except Exception as exc:
                failures.append(
                    StepFailure(step="index_component", store="vector", message=str(exc))
                )
        else:
            # A vector from an earlier version would describe stale content
            try:
                await self.vectors.remove_component(component_id)
            except Exception as exc:
                failures.append(
                    StepFailure(step="remove_component", store="vector", message=str(exc))
                )

        if failures:
            raise self._partial_failure("Publish", component_id, failures, result)
        logger.info("Published %s as version %d (%s)", component_id, number, version.semver)
        return result

    # -- reads ---------------------------------------------------------------

    async def get(self, reference: str) -> ComponentDetail:
        """A component id gives the component with its draft and latest version;
        a version id gives the component with that version."""
        parsed = parse_version_id(reference)
        if parsed is not None:
            component_id, number = parsed
            component = await self._load_component(component_id)
            version = await self._load_version(component_id, number)
            if version is None:
                raise NotFoundError(f"Version {reference} not found", component_id=component_id)
            return ComponentDetail(component=component, version=version)

        component = await self._load_component(reference)
        manifest = await self.content.get_draft_manifest(reference)
        draft = draft_from_manifest(manifest, self.content) if manifest else None
        version = None
        number = await self._current_version_number(component)
        if number:
            version = await self._load_version(reference, number)
        return ComponentDetail(component=component, draft=draft, version=version)

    async def get_content(
        self, reference: str, version: int | None = None, *, draft: bool = False
    ) -> bytes:
        """Payload bytes of the draft or a version.

        Without ``version`` or ``draft`` the draft is preferred, then the
        latest version. A version id selects that version.
        """
        parsed = parse_version_id(reference)
        if parsed is not None:
            reference, version = parsed
        component = await self._load_component(reference)
        if draft and version is not None:
            raise ComponentValidationError("Pass either version or draft, not both")

        payload: bytes | None = None
        if version is not None:
            payload = await self.content.get_version_content(component.id, version)
            what = f"Version {version} of {component.id}"
        else:
            payload = await self.content.get_draft_content(component.id)
            what = f"Draft of {component.id}"
            if payload is None and not draft:
                number = await self._current_version_number(component)
                if number:
                    payload = await self.content.get_version_content(component.id, number)
                    what = f"Content of {component.id}"
        if payload is None:
            raise NotFoundError(f"{what} not found", component_id=component.id)
        return payload

    async def get_version(self, reference: str, number: int | None = None) -> Version:
        if number is None:
            parsed = parse_version_id(reference)
            if parsed is None:
                raise NotFoundError(f"{reference} is not a version id")
            reference, number = parsed
        version = await self._load_version(reference, number)
        if version is None:
            raise NotFoundError(
                f"Version {number} of {reference} not found", component_id=reference
            )
        return version

    async def get_version_history(self, component_id: str) -> list[Version]:
        """Every version of a component, newest first."""
        await self._load_component(component_id)
        history = await self.index.get_version_history(component_id)
        if history:
            return history
        snapshot = await self.content.load_snapshot(component_id)
        if snapshot is None:
            return []
        return [version_from_manifest(m, self.content) for m in reversed(snapshot.versions)]

    async def get_version_chain(self, canonical_name: str) -> VersionChain:
        versions = await self.index.versions_for_name(canonical_name)
        refs = {ref.ref_name: ref.target_id for ref in await self.index.get_refs(canonical_name)}
        chain = build_version_chain(canonical_name, versions, refs)
        if chain.problems:
            logger.warning(
                "Version chain of %s is inconsistent: %s",
                canonical_name,
                "; ".join(chain.problems),
            )
        return chain

    async def list_components(
        self,
        filters: ComponentFilter | Mapping[str, Any] | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "updated_at",
        descending: bool = True,
    ) -> list[Component]:
        if isinstance(filters, Mapping):
            try:
                filters = ComponentFilter(**filters)
            except TypeError as exc:
                raise ComponentValidationError(f"Unknown filter: {exc}") from exc
        return await self.index.list_components(
            filters, limit=limit, offset=offset, order_by=order_by, descending=descending
        )

    async def list_published(self, *, limit: int = 50, offset: int = 0) -> list[Component]:
        return await self.list_components(
            ComponentFilter(status=ComponentStatus.PUBLISHED), limit=limit, offset=offset
        )

    async def count(self, filters: ComponentFilter | None = None) -> int:
        return await self.index.count_components(filters)

    # -- resolution ----------------------------------------------------------

    def _resolution(
        self, ref: str, kind: RefKind, component: Component, version: Version | None
    ) -> Resolution:
        if version is None:
            return Resolution(
                ref=ref,
                kind=kind,
                canonical_name=component.canonical_name,
                component_id=component.id,
                content_url=self.content.draft_content_url(component.id),
                manifest_url=self.content.draft_manifest_url(component.id),
            )
        return Resolution(
            ref=ref,
            kind=kind,
            canonical_name=component.canonical_name,
            component_id=component.id,
            version_id=version.id,
            version=version.version,
            semver=version.semver,
            content_url=version.content_url,
            manifest_url=version.manifest_url,
        )

    async def resolve(self, ref: str) -> Resolution:
        """Resolve an id, ``name``, ``name@tag``, ``name@1.2.3`` or ``name@^1.2``."""
        try:
            parsed = parse_ref(ref)
        except ValueError as exc:
            raise ComponentValidationError(str(exc)) from exc
        if parsed.kind is RefKind.ID:
            resolution = await self._resolve_id(ref, parsed.name)
            if resolution is not None:
                return resolution
            # Names shaped like ids fall through to name lookup
            parsed = parse_named_ref(parsed.name)
        return await self._resolve_named(ref, parsed)

    async def _resolve_id(self, ref: str, value: str) -> Resolution | None:
        parsed = parse_version_id(value)
        if parsed is not None:
            component_id, number = parsed
            try:
                component = await self._load_component(component_id)
            except NotFoundError:
                return None
            version = await self._load_version(component_id, number)
            return self._resolution(ref, RefKind.ID, component, version) if version else None

        if is_component_id(value):
            try:
                component = await self._load_component(value)
            except NotFoundError:
                return None
            number = await self._current_version_number(component)
            version = await self._load_version(value, number) if number else None
            return self._resolution(ref, RefKind.ID, component, version)

        asset = parse_asset_id(value)
        if asset is None:
            return None
        slug, number, digest = asset
        for version in reversed(await self.index.versions_for_name(slug)):
            if version.version == number and (version.content_hash or "").startswith(digest):
                component = await self._load_component(version.component_id)
                return self._resolution(ref, RefKind.ID, component, version)
        return None

    async def _resolve_named(self, ref: str, parsed: ParsedRef) -> Resolution:
        version: Version | None = None
        if parsed.kind is RefKind.TAG:
            pointer = await self.index.get_ref(parsed.name, parsed.selector)
            if pointer is not None:
                version = await self.index.get_version(pointer.target_id)
        else:
            candidates = await self.index.versions_for_name(parsed.name)
            version = select_version(parsed, candidates, lambda v: v.semver)
        if version is None:
            raise NotFoundError(f"Nothing matches {parsed}")
        component = await self._load_component(version.component_id)
        return self._resolution(ref, parsed.kind, component, version)

    async def lookup_component_id(self, reference: str) -> str | None:
        """Best-effort map from a name, tag or id to a component id."""
        component_id = component_id_of(reference)
        if component_id is not None and await self.index.get_component(component_id):
            return component_id
        try:
            return (await self.resolve(reference)).component_id
        except RegistryError:
            pass
        matches = await self.index.find_by_name(reference)
        return matches[0].id if matches else None

    # -- refs ----------------------------------------------------------------

    async def set_ref(self, canonical_name: str, ref_name: str, target: str) -> Ref:
        """Point ``canonical_name@ref_name`` at a version (any resolvable reference)."""
        ref_name = ref_name.strip()
        if ref_name.lower() in KNOWN_REFS:
            ref_name = ref_name.lower()
        if ref_name == LATEST:
            raise ComponentValidationError("The latest ref is managed by publish")
        if not ref_name or "@" in ref_name:
            raise ComponentValidationError(f"Invalid ref name {ref_name!r}")
        if semver.is_valid_range(ref_name):
            raise ComponentValidationError(f"Ref name {ref_name!r} would parse as a version range")
        resolution = await self.resolve(target)
        if resolution.version_id is None:
            raise ComponentValidationError(f"{target} has no published version")
        if resolution.canonical_name != canonical_name:
            raise ComponentValidationError(
                f"{resolution.version_id} belongs to {resolution.canonical_name!r}, "
                f"not {canonical_name!r}"
            )
        ref = await self.index.set_ref(canonical_name, ref_name, resolution.version_id)
        logger.info("Set %s@%s -> %s", canonical_name, ref_name, resolution.version_id)
        return ref

    async def get_refs(self, canonical_name: str) -> list[Ref]:
        return await self.index.get_refs(canonical_name)

    async def delete_ref(self, canonical_name: str, ref_name: str) -> None:
        ref_name = ref_name.strip()
        if ref_name.lower() in KNOWN_REFS:
            ref_name = ref_name.lower()
        if ref_name == LATEST:
            raise ComponentValidationError("The latest ref is managed by publish")
        if not await self.index.delete_ref(canonical_name, ref_name):
            raise NotFoundError(f"Ref {canonical_name}@{ref_name} not found")

    # -- search --------------------------------------------------------------

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
        """Semantic search over published components."""
        if not query.strip():
            raise ComponentValidationError("Search query must not be empty")
        return await self.vectors.search(
            query,
            type=type,
            file_type=file_type,
            media_type=media_type,
            limit=limit,
            min_score=min_score,
        )

    async def find_similar(
        self, component_id: str, *, limit: int | None = None, min_score: float = 0.0
    ) -> list[SearchHit]:
        await self._load_component(component_id)
        return await self.vectors.find_similar(component_id, limit=limit, min_score=min_score)

    # -- delete --------------------------------------------------------------

    async def delete(self, component_id: str) -> DeleteResult:
        """Remove a component from the vector index, the relational index and the content store."""
        if not is_component_id(component_id):
            raise NotFoundError(f"Component {component_id} not found", component_id=component_id)
        indexed = await self.index.get_component(component_id) is not None
        stored = await self.content.load_snapshot(component_id) is not None
        if not indexed and not stored:
            raise NotFoundError(f"Component {component_id} not found", component_id=component_id)

        failures: list[StepFailure] = []
        try:
            await self.vectors.remove_component(component_id)
        except Exception as exc:
            failures.append(StepFailure(step="remove_component", store="vector", message=str(exc)))
        try:
            await self.index.delete_component(component_id)
        except Exception as exc:
            failures.append(
                StepFailure(step="delete_component", store="relational", message=str(exc))
            )
        # Content goes last, and only once both indexes are clear
        if failures:
            logger.warning(
                "Keeping stored content of %s until its indexes are cleared", component_id
            )
        else:
            try:
                report = await self.content.delete_component(component_id)
            except Exception as exc:
                failures.append(
                    StepFailure(step="delete_component", store="content", message=str(exc))
                )
            else:
                failures.extend(
                    StepFailure(step=f"delete {key}", store="content", message=message)
                    for key, message in report.failed.items()
                )

        result = DeleteResult(
            component_id=component_id, deleted=not failures, failed_steps=failures
        )
        if failures:
            raise self._partial_failure("Delete", component_id, failures, result)
        logger.info("Deleted component %s", component_id)
        return result

    async def delete_many(self, component_ids: Iterable[str]) -> BatchResult:
        batch = BatchResult()
        for component_id in component_ids:
            try:
                await self.delete(component_id)
            except RegistryError as exc:
                batch.results.append(ItemResult(id=component_id, ok=False, error=exc.message))
            else:
                batch.results.append(ItemResult(id=component_id, ok=True, action="deleted"))
        return batch

    # -- drafts --------------------------------------------------------------

    async def cleanup_expired_drafts(
        self,
        max_age_hours: float | None = None,
        *,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> CleanupReport:
        """Drop drafts untouched for ``max_age_hours``.

        Components that were never published are deleted outright; published
        ones only lose the stale draft.
        """
        hours = self.draft_max_age_hours if max_age_hours is None else max_age_hours
        expired = await self.index.find_expired_drafts(
            int(hours * 3600 * 1000), now=now, limit=limit
        )
        report = CleanupReport()
        for component in expired:
            try:
                published = component.latest_version > 0 or bool(
                    await self.content.list_version_numbers(component.id)
                )
                if published:
                    await self.content.delete_draft(component.id)
                    await self.index.update_component_draft(component.id, False)
                    report.drafts_dropped.append(component.id)
                else:
                    await self.delete(component.id)
                    report.deleted.append(component.id)
            except Exception as exc:
                logger.warning("Draft cleanup of %s failed: %s", component.id, exc)
                report.errors.append(ItemResult(id=component.id, ok=False, error=str(exc)))
        if expired:
            logger.info(
                "Draft cleanup: %d deleted, %d drafts dropped, %d errors",
                len(report.deleted),
                len(report.drafts_dropped),
                len(report.errors),
            )
        return report

    # -- dependencies --------------------------------------------------------

    async def extract_dependencies(
        self,
        source_text: str,
        own: str | Iterable[str] | None = None,
        *,
        declared: Iterable[str] = (),
        own_id: str | None = None,
    ) -> DependencyReport:
        return await extract_dependencies(
            source_text, own, self.lookup_component_id, declared=declared, own_id=own_id
        )

    async def check_dependencies(self, component_id: str) -> DependencyReport:
        """Scan a component's current content against its declared dependencies."""
        detail = await self.get(component_id)
        current = detail.current
        if current is None:
            raise NotFoundError(
                f"Component {component_id} has no content", component_id=component_id
            )
        payload = await self.get_content(component_id)
        return await self.extract_dependencies(
            payload.decode("utf-8", errors="replace"),
            detail.component.canonical_name,
            declared=current.dependencies,
            own_id=component_id,
        )

    async def dependency_graph(self) -> DependencyGraph:
        return DependencyGraph.from_edges(await self.index.list_dependency_edges())

    async def find_dependency_cycles(self) -> list[list[str]]:
        return (await self.dependency_graph()).find_cycles()

    # -- repair --------------------------------------------------------------

    async def reindex(
        self,
        cursor: str | None = None,
        *,
        max_pages: int | None = None,
        page_size: int | None = None,
    ) -> ReindexReport:
        """Rebuild the relational and vector indexes from the content store."""
        return await self._reindexer.reindex(cursor, max_pages=max_pages, page_size=page_size)

    async def reindex_dependencies(
        self,
        cursor: str | None = None,
        *,
        max_pages: int | None = None,
        page_size: int | None = None,
    ) -> DependencyReindexReport:
        return await self._reindexer.reindex_dependencies(
            cursor, max_pages=max_pages, page_size=page_size
        )
