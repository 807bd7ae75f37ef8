"""Registry error taxonomy and its structured, caller-facing form."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation_error"
    DRAFT_REQUIRED = "draft_required"
    DRAFT_CONFLICT = "draft_conflict"
    VERSION_COLLISION = "version_collision"
    PARTIAL_FAILURE = "partial_failure"
    EMBEDDING_UNAVAILABLE = "embedding_unavailable"
    STORAGE = "storage_error"


class StepFailure(BaseModel):
    """One sub-operation of a multi-store write that did not complete."""

    step: str
    store: str
    message: str


class ErrorInfo(BaseModel):
    """A structured error with a kind and a human-readable message."""

    kind: ErrorKind
    message: str
    component_id: str | None = None
    failed_steps: list[StepFailure] = []


class RegistryError(Exception):
    """Base class for every error raised by the registry."""

    kind: ErrorKind = ErrorKind.STORAGE

    def __init__(self, message: str, *, component_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.component_id = component_id

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message, component_id=self.component_id)


class NotFoundError(RegistryError, LookupError):
    """A component, version or ref does not exist."""

    kind = ErrorKind.NOT_FOUND


class ComponentValidationError(RegistryError, ValueError):
    """Missing or malformed input to a create/update operation."""

    kind = ErrorKind.VALIDATION


class DraftRequiredError(RegistryError):
    """Publish was attempted on a component with no draft."""

    kind = ErrorKind.DRAFT_REQUIRED


class DraftConflictError(RegistryError):
    """The draft changed since the revision the caller based its write on."""

    kind = ErrorKind.DRAFT_CONFLICT

    def __init__(
        self, message: str, *, component_id: str | None = None, current_revision: int
    ) -> None:
        super().__init__(message, component_id=component_id)
        self.current_revision = current_revision


class VersionCollisionError(RegistryError):
    """Another publish already claimed this version number."""

    kind = ErrorKind.VERSION_COLLISION

    def __init__(
        self, message: str, *, component_id: str | None = None, version: int | None = None
    ) -> None:
        super().__init__(message, component_id=component_id)
        self.version = version


class EmbeddingUnavailableError(RegistryError):
    """The embedding model could not produce a vector."""

    kind = ErrorKind.EMBEDDING_UNAVAILABLE


class StorageError(RegistryError):
    """The content store failed before anything was committed."""

    kind = ErrorKind.STORAGE


class PartialFailureError(RegistryError):
    """Some stores were written and others were not.

    The content store write (if any) has been committed; ``failed_steps``
    names the derived-store writes that need a targeted reindex. ``result``
    holds whatever the operation would have returned on full success.
    """

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(
        self,
        message: str,
        failed_steps: list[StepFailure],
        *,
        component_id: str | None = None,
        result: Any = None,
    ) -> None:
        super().__init__(message, component_id=component_id)
        self.failed_steps = failed_steps
        self.result = result

    def to_info(self) -> ErrorInfo:
        info = super().to_info()
        info.failed_steps = list(self.failed_steps)
        return info
