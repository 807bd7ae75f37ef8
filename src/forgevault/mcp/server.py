"""FastMCP server exposing the forgevault registry as MCP tools.

Run via::

    forgevault-mcp                       # reads .env (default: stdio)
    MCP_TRANSPORT=http forgevault-mcp    # streamable HTTP on port 9000
    MCP_TRANSPORT=sse  forgevault-mcp    # legacy SSE on port 9000

The registry is built lazily on the first tool call, inside the server's
event loop. Settings are loaded from environment variables and ``.env``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from forgevault import __version__
from forgevault.models.errors import PartialFailureError, RegistryError
from forgevault.service.components import ComponentService
from forgevault.service.factory import Registry, build_registry
from forgevault.settings import Settings

# ---------------------------------------------------------------------------
# Server + shared state
# ---------------------------------------------------------------------------

logger = logging.getLogger("forgevault.mcp")

mcp = FastMCP("forgevault Artifact Registry")
_settings: Settings | None = None
_registry: Registry | None = None


async def _service() -> ComponentService:
    global _registry  # noqa: PLW0603
    if _registry is None:
        _registry = await build_registry(_settings or Settings())
    return _registry.service


@contextmanager
def _registry_errors() -> Iterator[None]:
    """Turn registry errors into ``ToolError("<kind>: <message>")``."""
    try:
        yield
    except PartialFailureError as exc:
        steps = ", ".join(f"{f.store}/{f.step}" for f in exc.failed_steps)
        raise ToolError(f"{exc.kind}: {exc.message} [{steps}]. Run reindex to repair.") from exc
    except RegistryError as exc:
        raise ToolError(f"{exc.kind}: {exc.message}") from exc


def _kind(
    type: str,
    file_type: str | None,
    media_type: str | None,
    entry: str | None,
) -> dict[str, Any]:
    kind: dict[str, Any] = {"type": type}
    for key, value in (("file_type", file_type), ("media_type", media_type), ("entry", entry)):
        if value is not None:
            kind[key] = value
    return kind


# ---------------------------------------------------------------------------
# Draft / publish tools
# ---------------------------------------------------------------------------


@mcp.tool
async def create_component(
    description: str,
    content: str,
    type: str = "file",
    file_type: str | None = None,
    media_type: str | None = None,
    entry: str | None = None,
    canonical_name: str | None = None,
    creator: str | None = None,
    mime_type: str | None = None,
    dependencies: list[str] | None = None,
) -> str:
    """Create a new component holding a first draft.

    Args:
        description: What the component is; also used for search.
        content: The draft source text.
        type: ``file``, ``bundle`` or ``asset``.
        file_type: Extension for files (``tsx``, ``css``, ...).
        media_type: For assets: ``image``, ``speech``, ``video`` or ``audio``.
        entry: Entry point of a bundle.
        canonical_name: Human name; derived from the description when omitted.
        creator: Who created it.
        mime_type: Overrides the type-based guess.
        dependencies: Component ids this component depends on.
    """
    logger.info("create_component called (type=%s, length=%d)", type, len(content))
    service = await _service()
    with _registry_errors():
        result = await service.create(
            {
                "description": description,
                "content": content,
                "kind": _kind(type, file_type, media_type, entry),
                "canonical_name": canonical_name,
                "creator": creator,
                "mime_type": mime_type,
                "dependencies": dependencies or [],
            }
        )
    return "\n".join(
        [
            f"component_id: {result.component.id}",
            f"canonical_name: {result.component.canonical_name}",
            f"status: {result.component.status}",
            f"draft_revision: {result.draft.revision}",
            f"content_url: {result.draft.content_url}",
        ]
    )


@mcp.tool
async def update_draft(
    component_id: str,
    content: str,
    description: str | None = None,
    expected_revision: int | None = None,
    dependencies: list[str] | None = None,
) -> str:
    """Overwrite a component's draft.

    Published components without a draft get the latest version copied into
    the draft slot first.

    Args:
        component_id: The component to edit.
        content: The new draft source text.
        description: New description; the current one is kept when omitted.
        expected_revision: Fail with draft_conflict unless the draft is still
            at this revision (0 = no draft). Omit for last-write-wins.
        dependencies: Replaces the declared dependencies when given.
    """
    service = await _service()
    with _registry_errors():
        result = await service.update_draft(
            component_id,
            {
                "content": content,
                "description": description,
                "expected_revision": expected_revision,
                "dependencies": dependencies,
            },
        )
    return f"Draft of {component_id} saved (revision {result.draft.revision})."


@mcp.tool
async def publish_component(
    component_id: str, bump: str = "patch", changelog: str | None = None
) -> str:
    """Publish the draft as the next immutable version.

    Args:
        component_id: The component to publish.
        bump: ``major``, ``minor`` or ``patch``. The first publish is always 1.0.0.
        changelog: Optional notes stored with the version.
    """
    service = await _service()
    with _registry_errors():
        result = await service.publish(component_id, bump, changelog)
    parts = [
        f"version_id: {result.version.id}",
        f"version: {result.version.version}",
        f"semver: {result.version.semver}",
        f"content_url: {result.version.content_url}",
    ]
    if result.warnings:
        parts.append(f"warnings: {'; '.join(result.warnings)}")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Read tools
# ---------------------------------------------------------------------------


@mcp.tool
async def get_component(reference: str) -> str:
    """Get a component (by component id) or one of its versions (by version id) as JSON."""
    service = await _service()
    with _registry_errors():
        detail = await service.get(reference)
    payload: dict[str, Any] = {
        "component": detail.component.model_dump(mode="json"),
        "state": str(detail.component.state),
    }
    if detail.draft is not None:
        payload["draft"] = detail.draft.model_dump(mode="json")
    if detail.version is not None:
        payload["version"] = detail.version.model_dump(mode="json")
    return json.dumps(payload, indent=2)


@mcp.tool
async def get_content(reference: str, version: int | None = None, draft: bool = False) -> str:
    """Return the source text of a draft or version.

    Args:
        reference: Component id or version id.
        version: Version number; the draft (else the latest version) when omitted.
        draft: Only return the draft.
    """
    service = await _service()
    with _registry_errors():
        payload = await service.get_content(reference, version, draft=draft)
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return f"<binary content, {len(payload)} bytes>"


@mcp.tool
async def resolve_reference(ref: str) -> str:
    """Resolve ``name``, ``name@tag``, ``name@1.2.3``, ``name@^1.2`` or an id."""
    service = await _service()
    with _registry_errors():
        resolution = await service.resolve(ref)
    lines = [
        f"component_id: {resolution.component_id}",
        f"canonical_name: {resolution.canonical_name}",
    ]
    if resolution.version_id is not None:
        lines += [
            f"version_id: {resolution.version_id}",
            f"semver: {resolution.semver}",
        ]
    else:
        lines.append("version_id: (unpublished draft)")
    lines.append(f"content_url: {resolution.content_url}")
    return "\n".join(lines)


@mcp.tool
async def search_components(
    query: str,
    type: str | None = None,
    file_type: str | None = None,
    media_type: str | None = None,
    limit: int = 10,
    min_score: float = 0.0,
) -> str:
    """Semantic search over published components."""
    service = await _service()
    with _registry_errors():
        hits = await service.search(
            query,
            type=type,
            file_type=file_type,
            media_type=media_type,
            limit=limit,
            min_score=min_score,
        )
    if not hits:
        return "No matching components."
    lines = [f"{len(hits)} result(s):", ""]
    for hit in hits:
        meta = hit.metadata
        lines.append(
            f"  {hit.component_id}  {meta.canonical_name}@{meta.semver}  "
            f"score={hit.score:.3f}  {meta.description[:80]}"
        )
    return "\n".join(lines)


@mcp.tool
async def list_components(
    status: str | None = None,
    type: str | None = None,
    file_type: str | None = None,
    media_type: str | None = None,
    canonical_name: str | None = None,
    limit: int = 50,
    offset: int = 0,
    order_by: str = "updated_at",
) -> str:
    """List components with optional equality filters."""
    service = await _service()
    filters = {
        "status": status,
        "type": type,
        "file_type": file_type,
        "media_type": media_type,
        "canonical_name": canonical_name,
    }
    with _registry_errors():
        components = await service.list_components(
            filters, limit=limit, offset=offset, order_by=order_by
        )
    if not components:
        return "No components."
    lines = ["Components:", ""]
    for c in components:
        draft = "  +draft" if c.has_draft else ""
        lines.append(f"  {c.id}  {c.canonical_name}  {c.status}  v{c.latest_version}{draft}")
    return "\n".join(lines)


@mcp.tool
async def version_history(component_id: str) -> str:
    """List every version of a component, newest first."""
    service = await _service()
    with _registry_errors():
        versions = await service.get_version_history(component_id)
    if not versions:
        return f"{component_id} has no published versions."
    lines = [f"Versions of {component_id}:", ""]
    for v in versions:
        note = f"  {v.changelog}" if v.changelog else ""
        lines.append(f"  {v.id}  {v.semver}  {v.created_at.isoformat()}{note}")
    return "\n".join(lines)


@mcp.tool
async def version_chain(canonical_name: str) -> str:
    """Show the version tree of every component sharing a canonical name."""
    service = await _service()
    with _registry_errors():
        chain = await service.get_version_chain(canonical_name)
    if not chain.nodes:
        return f"No versions named {canonical_name!r}."
    lines = [f"Version chain of {canonical_name}:", ""]
    for node in chain.nodes:
        marks = []
        if node.refs:
            marks.append(", ".join(node.refs))
        if node.is_orphan:
            marks.append("orphan")
        suffix = f"  [{'; '.join(marks)}]" if marks else ""
        lines.append(f"  {'  ' * node.depth}{node.id}  {node.semver}{suffix}")
    if chain.problems:
        lines.append("")
        lines.append("problems:")
        lines.extend(f"  {problem}" for problem in chain.problems)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Write / maintenance tools
# ---------------------------------------------------------------------------


@mcp.tool
async def delete_component(component_id: str) -> str:
    """Delete a component with every draft, version, ref and vector."""
    service = await _service()
    with _registry_errors():
        await service.delete(component_id)
    return f"Component {component_id} deleted."


@mcp.tool
async def set_ref(canonical_name: str, ref_name: str, target: str) -> str:
    """Point ``canonical_name@ref_name`` at a version (``latest`` is managed by publish)."""
    service = await _service()
    with _registry_errors():
        ref = await service.set_ref(canonical_name, ref_name, target)
    return f"{ref.canonical_name}@{ref.ref_name} -> {ref.target_id}"


@mcp.tool
async def check_dependencies(component_id: str) -> str:
    """Scan a component's current source for references to other components."""
    service = await _service()
    with _registry_errors():
        report = await service.check_dependencies(component_id)
    if not report.findings:
        return f"No component references found in {component_id}."
    lines = [f"Dependencies of {component_id}:", ""]
    for f in report.findings:
        target = f" -> {f.component_id}" if f.component_id else ""
        lines.append(f"  [{f.status}] {f.reference} ({f.source}, line {f.line}){target}")
    return "\n".join(lines)


@mcp.tool
async def reindex(cursor: str | None = None, max_pages: int | None = None) -> str:
    """Rebuild the relational and vector indexes from the content store.

    Pass the returned cursor back to continue a bounded run.
    """
    service = await _service()
    report = await service.reindex(cursor, max_pages=max_pages)
    lines = [
        f"scanned: {report.scanned}",
        f"indexed: {report.indexed}",
        f"vectors: {report.vectors}",
        f"errors: {len(report.errors)}",
    ]
    lines += [f"  {e.id}: {e.error}" for e in report.errors]
    lines.append("done" if report.done else f"cursor: {report.cursor}")
    return "\n".join(lines)


@mcp.tool
async def reindex_dependencies(cursor: str | None = None, max_pages: int | None = None) -> str:
    """Re-extract dependencies of every scannable draft and version."""
    service = await _service()
    report = await service.reindex_dependencies(cursor, max_pages=max_pages)
    lines = [
        f"scanned: {report.scanned}",
        f"updated: {report.updated}",
        f"skipped: {report.skipped}",
        f"errors: {len(report.errors)}",
    ]
    lines += [f"  {e.id}: {e.error}" for e in report.errors]
    lines.append("done" if report.done else f"cursor: {report.cursor}")
    return "\n".join(lines)


@mcp.tool
async def cleanup_drafts(max_age_hours: float | None = None) -> str:
    """Expire drafts older than ``max_age_hours`` (default from settings)."""
    service = await _service()
    report = await service.cleanup_expired_drafts(max_age_hours)
    lines = [
        f"deleted: {len(report.deleted)}",
        f"drafts dropped: {len(report.drafts_dropped)}",
        f"errors: {len(report.errors)}",
    ]
    lines += [f"  {e.id}: {e.error}" for e in report.errors]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server using settings from environment / .env file."""
    settings = Settings()

    logging.basicConfig(level=settings.log_level.upper())
    logger.info(
        "forgevault MCP Server v%s starting (transport=%s)",
        __version__,
        settings.mcp_transport,
    )

    global _settings  # noqa: PLW0603
    _settings = settings

    if settings.mcp_transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(
            transport=settings.mcp_transport,
            host=settings.mcp_server_host,
            port=settings.mcp_server_port,
            log_level=settings.log_level.lower(),
        )


if __name__ == "__main__":
    main()
