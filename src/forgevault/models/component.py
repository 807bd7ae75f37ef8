"""Component, version, draft and ref models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


class ComponentStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"


class LifecycleState(StrEnum):
    """Position of a component in the draft/publish state machine."""

    NEW = "new"
    DRAFTING = "drafting"
    PUBLISHED_CLEAN = "published_clean"
    PUBLISHED_DRAFTING = "published_drafting"


class MediaType(StrEnum):
    IMAGE = "image"
    SPEECH = "speech"
    VIDEO = "video"
    AUDIO = "audio"


class SourceType(StrEnum):
    AI_GENERATED = "ai_generated"
    MANUAL = "manual"
    IMPORT = "import"


# -- artifact kind (tagged union) -------------------------------------------


class CodeFile(BaseModel):
    """A single source file (``tsx``, ``css``, ``py``, ...)."""

    type: Literal["file"] = "file"
    file_type: str

    @field_validator("file_type")
    @classmethod
    def _normalize_file_type(cls, value: str) -> str:
        value = value.strip().lower().lstrip(".")
        if not value:
            raise ValueError("file_type must not be empty")
        return value


class Bundle(BaseModel):
    """A bundled build output made of several files."""

    type: Literal["bundle"] = "bundle"
    entry: str | None = None
    bundler: str | None = None


class MediaAsset(BaseModel):
    """A generated binary asset such as an image or speech clip."""

    type: Literal["asset"] = "asset"
    media_type: MediaType


ArtifactKind = Annotated[CodeFile | Bundle | MediaAsset, Field(discriminator="type")]


def kind_columns(kind: CodeFile | Bundle | MediaAsset) -> tuple[str, str | None, str | None]:
    """Flatten a kind into ``(type, file_type, media_type)`` for indexing."""
    match kind:
        case CodeFile(file_type=file_type):
            return kind.type, file_type, None
        case MediaAsset(media_type=media_type):
            return kind.type, None, str(media_type)
        case Bundle():
            return kind.type, None, None
    raise TypeError(f"Unknown artifact kind: {kind!r}")


_FILE_MIME_TYPES: dict[str, str] = {
    "tsx": "text/typescript",
    "ts": "text/typescript",
    "jsx": "text/javascript",
    "js": "text/javascript",
    "mjs": "text/javascript",
    "css": "text/css",
    "html": "text/html",
    "json": "application/json",
    "yaml": "text/yaml",
    "yml": "text/yaml",
    "md": "text/markdown",
    "txt": "text/plain",
    "py": "text/x-python",
    "rs": "text/x-rust",
    "go": "text/x-go",
    "sql": "application/sql",
    "svg": "image/svg+xml",
    "vue": "text/plain",
    "svelte": "text/plain",
}

_MEDIA_MIME_TYPES: dict[MediaType, str] = {
    MediaType.IMAGE: "image/png",
    MediaType.SPEECH: "audio/mpeg",
    MediaType.AUDIO: "audio/mpeg",
    MediaType.VIDEO: "video/mp4",
}


def guess_mime_type(kind: CodeFile | Bundle | MediaAsset) -> str:
    """Best-effort MIME type for a kind when the caller supplied none."""
    match kind:
        case CodeFile(file_type=file_type):
            return _FILE_MIME_TYPES.get(file_type, "text/plain")
        case MediaAsset(media_type=media_type):
            return _MEDIA_MIME_TYPES[media_type]
        case _:
            return "application/javascript"


# -- records -----------------------------------------------------------------


class Provenance(BaseModel):
    """Where an artifact came from."""

    source_type: SourceType = SourceType.MANUAL
    ai_model: str | None = None
    ai_provider: str | None = None
    generation_params: dict[str, Any] = {}


class Component(BaseModel):
    """One logical artifact across its lifetime."""

    id: str
    canonical_name: str
    status: ComponentStatus = ComponentStatus.DRAFT
    kind: ArtifactKind
    description: str = ""
    latest_version: int = Field(default=0, ge=0)
    has_draft: bool = True
    creator: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def type(self) -> str:
        return self.kind.type

    @property
    def file_type(self) -> str | None:
        return kind_columns(self.kind)[1]

    @property
    def media_type(self) -> str | None:
        return kind_columns(self.kind)[2]

    @property
    def state(self) -> LifecycleState:
        if self.latest_version == 0:
            if self.updated_at > self.created_at:
                return LifecycleState.DRAFTING
            return LifecycleState.NEW
        if self.has_draft:
            return LifecycleState.PUBLISHED_DRAFTING
        return LifecycleState.PUBLISHED_CLEAN


class Version(BaseModel):
    """An immutable, numbered snapshot of a component."""

    id: str
    component_id: str
    version: int = Field(ge=1)
    semver: str
    parent_version_id: str | None = None
    description: str = ""
    changelog: str | None = None
    content_url: str = ""
    manifest_url: str = ""
    size: int = 0
    mime_type: str = "application/octet-stream"
    content_hash: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    provenance: Provenance = Field(default_factory=Provenance)
    metadata: dict[str, Any] = {}
    dependencies: list[str] = []


class Draft(BaseModel):
    """The mutable staging slot for a component's next version."""

    component_id: str
    description: str = ""
    content_url: str = ""
    manifest_url: str = ""
    size: int = 0
    mime_type: str = "application/octet-stream"
    revision: int = Field(default=1, ge=1)
    updated_at: datetime = Field(default_factory=utcnow)
    provenance: Provenance = Field(default_factory=Provenance)
    metadata: dict[str, Any] = {}
    dependencies: list[str] = []


class Ref(BaseModel):
    """A named pointer from a canonical name to a version id."""

    canonical_name: str
    ref_name: str
    target_id: str
    updated_at: datetime = Field(default_factory=utcnow)
