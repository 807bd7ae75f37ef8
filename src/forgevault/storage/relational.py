"""Relational index: a derived, queryable mirror of the content store.

Every write here is an upsert or a replace, so replaying the content
store's manifests (see ``ComponentService.reindex``) converges on the same
state no matter how many times it runs.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from pydantic import TypeAdapter
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from forgevault.models.component import (
    ArtifactKind,
    Component,
    ComponentStatus,
    Provenance,
    Ref,
    Version,
    kind_columns,
    utcnow,
)
from forgevault.models.errors import ComponentValidationError, NotFoundError, VersionCollisionError
from forgevault.versioning.refs import LATEST

logger = logging.getLogger("forgevault.storage.relational")

metadata = sa.MetaData()

components = sa.Table(
    "components",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("canonical_name", sa.String(255), nullable=False),
    sa.Column("status", sa.String(16), nullable=False),
    sa.Column("type", sa.String(16), nullable=False),
    sa.Column("file_type", sa.String(32)),
    sa.Column("media_type", sa.String(16)),
    sa.Column("kind", sa.JSON, nullable=False),
    sa.Column("description", sa.Text, nullable=False, default=""),
    sa.Column("latest_version", sa.Integer, nullable=False, default=0),
    sa.Column("has_draft", sa.Boolean, nullable=False, default=True),
    sa.Column("creator", sa.String(255)),
    sa.Column("created_at", sa.BigInteger, nullable=False),  # unix ms
    sa.Column("updated_at", sa.BigInteger, nullable=False),
    sa.Index("ix_components_canonical_name", "canonical_name"),
    sa.Index("ix_components_status", "status"),
    sa.Index("ix_components_draft_age", "has_draft", "updated_at"),
)

versions = sa.Table(
    "versions",
    metadata,
    sa.Column("id", sa.String(80), primary_key=True),
    sa.Column("component_id", sa.String(64), nullable=False),
    sa.Column("version", sa.Integer, nullable=False),
    sa.Column("semver", sa.String(64), nullable=False),
    sa.Column("parent_version_id", sa.String(80)),
    sa.Column("description", sa.Text, nullable=False, default=""),
    sa.Column("changelog", sa.Text),
    sa.Column("content_url", sa.Text, nullable=False, default=""),
    sa.Column("manifest_url", sa.Text, nullable=False, default=""),
    sa.Column("size", sa.Integer, nullable=False, default=0),
    sa.Column("mime_type", sa.String(128), nullable=False),
    sa.Column("content_hash", sa.String(64)),
    sa.Column("provenance", sa.JSON, nullable=False),
    sa.Column("metadata", sa.JSON, nullable=False),
    sa.Column("dependencies", sa.JSON, nullable=False),
    sa.Column("created_at", sa.BigInteger, nullable=False),
    sa.UniqueConstraint("component_id", "version", name="uq_versions_component_version"),
    sa.Index("ix_versions_component_id", "component_id"),
)

refs = sa.Table(
    "refs",
    metadata,
    sa.Column("canonical_name", sa.String(255), primary_key=True),
    sa.Column("ref_name", sa.String(64), primary_key=True),
    sa.Column("target_id", sa.String(80), nullable=False),
    sa.Column("updated_at", sa.BigInteger, nullable=False),
    sa.Index("ix_refs_target_id", "target_id"),
)

version_lineage = sa.Table(
    "version_lineage",
    metadata,
    sa.Column("parent_id", sa.String(80), primary_key=True),
    sa.Column("child_id", sa.String(80), primary_key=True),
)

dependency_edges = sa.Table(
    "dependency_edges",
    metadata,
    sa.Column("component_id", sa.String(64), primary_key=True),
    sa.Column("depends_on", sa.String(64), primary_key=True),
    sa.Index("ix_dependency_edges_depends_on", "depends_on"),
)

ORDER_COLUMNS = ("created_at", "updated_at", "latest_version", "canonical_name")

_KIND_ADAPTER: TypeAdapter[Any] = TypeAdapter(ArtifactKind)


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, UTC)


@dataclass
class ComponentFilter:
    """Equality filters for :meth:`RelationalIndex.list_components`."""

    status: ComponentStatus | str | None = None
    type: str | None = None
    file_type: str | None = None
    media_type: str | None = None
    canonical_name: str | None = None
    creator: str | None = None

    def clauses(self) -> list[sa.ColumnElement[bool]]:
        result: list[sa.ColumnElement[bool]] = []
        for name in ("status", "type", "file_type", "media_type", "canonical_name", "creator"):
            value = getattr(self, name)
            if value is not None:
                result.append(components.c[name] == str(value))
        return result


class RelationalIndex:
    """Components, versions, refs, lineage and dependency edges on SQLAlchemy Core."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> RelationalIndex:
        parsed = make_url(url)
        kwargs: dict[str, Any] = {}
        if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return cls(create_async_engine(url, echo=echo, **kwargs))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    def _insert(self, table: sa.Table) -> Any:
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"Upserts are not implemented for dialect {dialect!r}")

    def _upsert(self, table: sa.Table, values: dict[str, Any], keys: Sequence[str]) -> Any:
        stmt = self._insert(table).values(**values)
        updates = {name: stmt.excluded[name] for name in values if name not in keys}
        if not updates:
            return stmt.on_conflict_do_nothing(index_elements=list(keys))
        return stmt.on_conflict_do_update(index_elements=list(keys), set_=updates)

    # -- components --------------------------------------------------------

    @staticmethod
    def _component_values(component: Component) -> dict[str, Any]:
        type_, file_type, media_type = kind_columns(component.kind)
        return {
            "id": component.id,
            "canonical_name": component.canonical_name,
            "status": str(component.status),
            "type": type_,
            "file_type": file_type,
            "media_type": media_type,
            "kind": component.kind.model_dump(mode="json"),
            "description": component.description,
            "latest_version": component.latest_version,
            "has_draft": component.has_draft,
            "creator": component.creator,
            "created_at": _to_ms(component.created_at),
            "updated_at": _to_ms(component.updated_at),
        }

    @staticmethod
    def _row_to_component(row: sa.Row[Any]) -> Component:
        return Component(
            id=row.id,
            canonical_name=row.canonical_name,
            status=ComponentStatus(row.status),
            kind=_KIND_ADAPTER.validate_python(row.kind),
            description=row.description,
            latest_version=row.latest_version,
            has_draft=bool(row.has_draft),
            creator=row.creator,
            created_at=_from_ms(row.created_at),
            updated_at=_from_ms(row.updated_at),
        )

    async def create_component(self, component: Component) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(components.insert().values(**self._component_values(component)))

    async def upsert_component(self, component: Component) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                self._upsert(components, self._component_values(component), ["id"])
            )

    async def get_component(self, component_id: str) -> Component | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(sa.select(components).where(components.c.id == component_id))
            ).first()
        return self._row_to_component(row) if row else None

    async def find_by_name(self, canonical_name: str) -> list[Component]:
        stmt = (
            sa.select(components)
            .where(components.c.canonical_name == canonical_name)
            .order_by(components.c.updated_at.desc(), components.c.id)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [self._row_to_component(row) for row in rows]

    async def update_component_draft(
        self, component_id: str, has_draft: bool, description: str | None = None
    ) -> None:
        values: dict[str, Any] = {"has_draft": has_draft, "updated_at": _to_ms(utcnow())}
        if description is not None:
            values["description"] = description
        async with self._engine.begin() as conn:
            result = await conn.execute(
                components.update().where(components.c.id == component_id).values(**values)
            )
        if result.rowcount == 0:
            raise NotFoundError(f"Component {component_id} not found", component_id=component_id)

    async def publish_component(
        self, component_id: str, version: Version, description: str | None = None
    ) -> None:
        """Record a publish as one transaction.

        Inserts the version row, flips the component to published, moves the
        ``latest`` ref, adds the lineage edge and replaces the dependency
        edges. A duplicate version number raises :class:`VersionCollisionError`.
        """
        async with self._engine.begin() as conn:
            row = (
                await conn.execute(sa.select(components).where(components.c.id == component_id))
            ).first()
            if row is None:
                raise NotFoundError(
                    f"Component {component_id} not found", component_id=component_id
                )
            try:
                await conn.execute(versions.insert().values(**self._version_values(version)))
            except IntegrityError as exc:
                raise VersionCollisionError(
                    f"Version {version.version} of {component_id} is already indexed",
                    component_id=component_id,
                    version=version.version,
                ) from exc
            values: dict[str, Any] = {
                "status": str(ComponentStatus.PUBLISHED),
                "latest_version": max(row.latest_version, version.version),
                "has_draft": False,
                "updated_at": _to_ms(version.created_at),
            }
            if description is not None:
                values["description"] = description
            await conn.execute(
                components.update().where(components.c.id == component_id).values(**values)
            )
            await self._set_ref(conn, row.canonical_name, LATEST, version.id, version.created_at)
            await self._add_lineage(conn, version)
            await self._replace_dependencies(conn, component_id, version.dependencies)

    async def list_components(
        self,
        filters: ComponentFilter | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "updated_at",
        descending: bool = True,
    ) -> list[Component]:
        if order_by not in ORDER_COLUMNS:
            raise ComponentValidationError(
                f"Cannot order by {order_by!r}; expected one of {', '.join(ORDER_COLUMNS)}"
            )
        if limit < 1 or offset < 0:
            raise ComponentValidationError("limit must be positive and offset non-negative")
        column = components.c[order_by]
        stmt = (
            sa.select(components)
            .where(*(filters or ComponentFilter()).clauses())
            .order_by(column.desc() if descending else column.asc(), components.c.id)
            .limit(limit)
            .offset(offset)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [self._row_to_component(row) for row in rows]

    async def count_components(self, filters: ComponentFilter | None = None) -> int:
        stmt = (
            sa.select(sa.func.count())
            .select_from(components)
            .where(*(filters or ComponentFilter()).clauses())
        )
        async with self._engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def find_expired_drafts(
        self, max_age_ms: int, *, now: datetime | None = None, limit: int | None = None
    ) -> list[Component]:
        """Components holding a draft that has not been written for ``max_age_ms``."""
        cutoff = _to_ms(now or utcnow()) - max_age_ms
        stmt = (
            sa.select(components)
            .where(components.c.has_draft.is_(True), components.c.updated_at < cutoff)
            .order_by(components.c.updated_at.asc(), components.c.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [self._row_to_component(row) for row in rows]

    async def delete_component(self, component_id: str) -> bool:
        """Remove a component and everything indexed for it.

        Refs that pointed at its versions are dropped; a dropped ``latest``
        is repointed at the newest surviving version of the same name.
        Returns False when the component was not indexed.
        """
        async with self._engine.begin() as conn:
            row = (
                await conn.execute(sa.select(components).where(components.c.id == component_id))
            ).first()
            if row is None:
                return False
            version_ids = list(
                (
                    await conn.execute(
                        sa.select(versions.c.id).where(versions.c.component_id == component_id)
                    )
                ).scalars()
            )
            targets = [*version_ids, component_id]
            dropped = (
                await conn.execute(
                    sa.select(refs.c.canonical_name, refs.c.ref_name).where(
                        refs.c.target_id.in_(targets)
                    )
                )
            ).all()
            await conn.execute(refs.delete().where(refs.c.target_id.in_(targets)))
            if version_ids:
                await conn.execute(
                    version_lineage.delete().where(
                        sa.or_(
                            version_lineage.c.parent_id.in_(version_ids),
                            version_lineage.c.child_id.in_(version_ids),
                        )
                    )
                )
            await conn.execute(versions.delete().where(versions.c.component_id == component_id))
            await conn.execute(
                dependency_edges.delete().where(dependency_edges.c.component_id == component_id)
            )
            await conn.execute(components.delete().where(components.c.id == component_id))
            for name, ref_name in dropped:
                if ref_name != LATEST:
                    continue
                newest = await self._newest_version(conn, name)
                if newest is not None:
                    await self._set_ref(conn, name, LATEST, newest.id, _from_ms(newest.created_at))
                    logger.info("Repointed %s@latest to %s", name, newest.id)
        return True

    # -- versions ----------------------------------------------------------

    @staticmethod
    def _version_values(version: Version) -> dict[str, Any]:
        return {
            "id": version.id,
            "component_id": version.component_id,
            "version": version.version,
            "semver": version.semver,
            "parent_version_id": version.parent_version_id,
            "description": version.description,
            "changelog": version.changelog,
            "content_url": version.content_url,
            "manifest_url": version.manifest_url,
            "size": version.size,
            "mime_type": version.mime_type,
            "content_hash": version.content_hash,
            "provenance": version.provenance.model_dump(mode="json"),
            "metadata": version.metadata,
            "dependencies": list(version.dependencies),
            "created_at": _to_ms(version.created_at),
        }

    @staticmethod
    def _row_to_version(row: sa.Row[Any]) -> Version:
        return Version(
            id=row.id,
            component_id=row.component_id,
            version=row.version,
            semver=row.semver,
            parent_version_id=row.parent_version_id,
            description=row.description,
            changelog=row.changelog,
            content_url=row.content_url,
            manifest_url=row.manifest_url,
            size=row.size,
            mime_type=row.mime_type,
            content_hash=row.content_hash,
            provenance=Provenance.model_validate(row.provenance or {}),
            metadata=row._mapping["metadata"] or {},
            dependencies=row.dependencies or [],
            created_at=_from_ms(row.created_at),
        )

    async def index_version(self, version: Version) -> None:
        """Idempotently record a version and its lineage edge."""
        async with self._engine.begin() as conn:
            await conn.execute(self._upsert(versions, self._version_values(version), ["id"]))
            await self._add_lineage(conn, version)

    async def get_version(self, version_id: str) -> Version | None:
        async with self._engine.connect() as conn:
            stmt = sa.select(versions).where(versions.c.id == version_id)
            row = (await conn.execute(stmt)).first()
        return self._row_to_version(row) if row else None

    async def get_version_by_number(self, component_id: str, version: int) -> Version | None:
        stmt = sa.select(versions).where(
            versions.c.component_id == component_id, versions.c.version == version
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        return self._row_to_version(row) if row else None

    async def get_version_history(self, component_id: str) -> list[Version]:
        """All versions of a component, newest first."""
        stmt = (
            sa.select(versions)
            .where(versions.c.component_id == component_id)
            .order_by(versions.c.version.desc())
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [self._row_to_version(row) for row in rows]

    async def versions_for_name(self, canonical_name: str) -> list[Version]:
        """Every version of every component sharing a name, oldest first."""
        stmt = (
            sa.select(versions)
            .join(components, components.c.id == versions.c.component_id)
            .where(components.c.canonical_name == canonical_name)
            .order_by(versions.c.created_at.asc(), versions.c.version.asc(), versions.c.id)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [self._row_to_version(row) for row in rows]

    async def _add_lineage(self, conn: AsyncConnection, version: Version) -> None:
        if not version.parent_version_id:
            return
        await conn.execute(
            self._upsert(
                version_lineage,
                {"parent_id": version.parent_version_id, "child_id": version.id},
                ["parent_id", "child_id"],
            )
        )

    async def _newest_version(
        self, conn: AsyncConnection, canonical_name: str
    ) -> sa.Row[Any] | None:
        stmt = (
            sa.select(versions.c.id, versions.c.created_at)
            .join(components, components.c.id == versions.c.component_id)
            .where(components.c.canonical_name == canonical_name)
            .order_by(versions.c.created_at.desc(), versions.c.version.desc())
            .limit(1)
        )
        return (await conn.execute(stmt)).first()

    # -- refs --------------------------------------------------------------

    async def _set_ref(
        self,
        conn: AsyncConnection,
        canonical_name: str,
        ref_name: str,
        target_id: str,
        at: datetime | None = None,
    ) -> None:
        values = {
            "canonical_name": canonical_name,
            "ref_name": ref_name,
            "target_id": target_id,
            "updated_at": _to_ms(at or utcnow()),
        }
        await conn.execute(self._upsert(refs, values, ["canonical_name", "ref_name"]))

    async def set_ref(self, canonical_name: str, ref_name: str, target_id: str) -> Ref:
        now = utcnow()
        async with self._engine.begin() as conn:
            await self._set_ref(conn, canonical_name, ref_name, target_id, now)
        return Ref(
            canonical_name=canonical_name, ref_name=ref_name, target_id=target_id, updated_at=now
        )

    async def get_ref(self, canonical_name: str, ref_name: str) -> Ref | None:
        stmt = sa.select(refs).where(
            refs.c.canonical_name == canonical_name, refs.c.ref_name == ref_name
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        if row is None:
            return None
        return Ref(
            canonical_name=row.canonical_name,
            ref_name=row.ref_name,
            target_id=row.target_id,
            updated_at=_from_ms(row.updated_at),
        )

    async def get_refs(self, canonical_name: str) -> list[Ref]:
        stmt = (
            sa.select(refs)
            .where(refs.c.canonical_name == canonical_name)
            .order_by(refs.c.ref_name)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [
            Ref(
                canonical_name=row.canonical_name,
                ref_name=row.ref_name,
                target_id=row.target_id,
                updated_at=_from_ms(row.updated_at),
            )
            for row in rows
        ]

    async def delete_ref(self, canonical_name: str, ref_name: str) -> bool:
        async with self._engine.begin() as conn:
            result = await conn.execute(
                refs.delete().where(
                    refs.c.canonical_name == canonical_name, refs.c.ref_name == ref_name
                )
            )
        return result.rowcount > 0

    # -- dependency edges --------------------------------------------------

    async def _replace_dependencies(
        self, conn: AsyncConnection, component_id: str, dependencies: Sequence[str]
    ) -> None:
        await conn.execute(
            dependency_edges.delete().where(dependency_edges.c.component_id == component_id)
        )
        targets = sorted({d for d in dependencies if d != component_id})
        if targets:
            await conn.execute(
                dependency_edges.insert(),
                [{"component_id": component_id, "depends_on": target} for target in targets],
            )

    async def replace_dependencies(self, component_id: str, dependencies: Sequence[str]) -> None:
        async with self._engine.begin() as conn:
            await self._replace_dependencies(conn, component_id, dependencies)

    async def list_dependency_edges(self) -> list[tuple[str, str]]:
        stmt = sa.select(dependency_edges.c.component_id, dependency_edges.c.depends_on).order_by(
            dependency_edges.c.component_id, dependency_edges.c.depends_on
        )
        async with self._engine.connect() as conn:
            return [(row[0], row[1]) for row in (await conn.execute(stmt)).all()]
