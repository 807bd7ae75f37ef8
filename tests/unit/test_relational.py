"""Tests for the SQLAlchemy relational index (in-memory SQLite)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import sqlalchemy as sa

from forgevault.models.component import (
    CodeFile,
    Component,
    ComponentStatus,
    MediaAsset,
    MediaType,
    Version,
)
from forgevault.models.errors import (
    ComponentValidationError,
    NotFoundError,
    VersionCollisionError,
)
from forgevault.storage.relational import ComponentFilter, RelationalIndex, version_lineage

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def _component(
    cid: str, name: str = "toggle", *, minute: int = 0, **fields: object
) -> Component:
    at = T0 + timedelta(minutes=minute)
    data: dict[str, object] = {
        "id": cid,
        "canonical_name": name,
        "kind": CodeFile(file_type="tsx"),
        "description": f"{name} component",
        "created_at": at,
        "updated_at": at,
    }
    data.update(fields)
    return Component.model_validate(data)


def _version(cid: str, number: int = 1, *, minute: int = 0, **fields: object) -> Version:
    data: dict[str, object] = {
        "id": f"{cid}-v{number}",
        "component_id": cid,
        "version": number,
        "semver": f"1.{number - 1}.0",
        "parent_version_id": f"{cid}-v{number - 1}" if number > 1 else None,
        "created_at": T0 + timedelta(minutes=minute),
    }
    data.update(fields)
    return Version.model_validate(data)


class TestComponents:
    async def test_create_and_get(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001", creator="ci"))
        loaded = await relational.get_component("aaaa-0001")
        assert loaded is not None
        assert loaded.canonical_name == "toggle"
        assert loaded.kind == CodeFile(file_type="tsx")
        assert loaded.status is ComponentStatus.DRAFT
        assert loaded.has_draft
        assert loaded.creator == "ci"
        assert loaded.created_at == T0
        assert await relational.get_component("ffff-ffff") is None

    async def test_media_kind_round_trip(self, relational: RelationalIndex) -> None:
        await relational.create_component(
            _component("aaaa-0001", "beep", kind=MediaAsset(media_type=MediaType.SPEECH))
        )
        loaded = await relational.get_component("aaaa-0001")
        assert loaded is not None
        assert loaded.kind == MediaAsset(media_type=MediaType.SPEECH)
        assert loaded.media_type == "speech"

    async def test_upsert_overwrites(self, relational: RelationalIndex) -> None:
        await relational.upsert_component(_component("aaaa-0001"))
        await relational.upsert_component(_component("aaaa-0001", description="changed"))
        loaded = await relational.get_component("aaaa-0001")
        assert loaded is not None
        assert loaded.description == "changed"
        assert await relational.count_components() == 1

    async def test_find_by_name(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001", minute=0))
        await relational.create_component(_component("bbbb-0002", minute=5))
        await relational.create_component(_component("cccc-0003", "other"))
        found = await relational.find_by_name("toggle")
        assert [c.id for c in found] == ["bbbb-0002", "aaaa-0001"]

    async def test_update_draft_flag(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.update_component_draft("aaaa-0001", False, "new text")
        loaded = await relational.get_component("aaaa-0001")
        assert loaded is not None
        assert not loaded.has_draft
        assert loaded.description == "new text"
        assert loaded.updated_at > T0

    async def test_update_draft_missing(self, relational: RelationalIndex) -> None:
        with pytest.raises(NotFoundError):
            await relational.update_component_draft("ffff-ffff", True)


async def _lineage(relational: RelationalIndex) -> list[tuple[str, str]]:
    stmt = sa.select(version_lineage.c.parent_id, version_lineage.c.child_id)
    async with relational.engine.connect() as conn:
        return [(row[0], row[1]) for row in (await conn.execute(stmt)).all()]


class TestPublish:
    async def test_publish(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        version = _version("aaaa-0001", minute=1, dependencies=["bbbb-0002"])
        await relational.publish_component("aaaa-0001", version, "published text")
        component = await relational.get_component("aaaa-0001")
        assert component is not None
        assert component.status is ComponentStatus.PUBLISHED
        assert component.latest_version == 1
        assert not component.has_draft
        assert component.description == "published text"
        ref = await relational.get_ref("toggle", "latest")
        assert ref is not None
        assert ref.target_id == "aaaa-0001-v1"
        assert await relational.list_dependency_edges() == [("aaaa-0001", "bbbb-0002")]

    async def test_publish_collision(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.publish_component("aaaa-0001", _version("aaaa-0001"))
        with pytest.raises(VersionCollisionError):
            await relational.publish_component("aaaa-0001", _version("aaaa-0001", semver="9.9.9"))
        stored = await relational.get_version("aaaa-0001-v1")
        assert stored is not None
        assert stored.semver == "1.0.0"

    async def test_publish_missing_component(self, relational: RelationalIndex) -> None:
        with pytest.raises(NotFoundError):
            await relational.publish_component("ffff-ffff", _version("ffff-ffff"))
        assert await relational.get_version("ffff-ffff-v1") is None

    async def test_lineage(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.publish_component("aaaa-0001", _version("aaaa-0001", 1))
        await relational.publish_component("aaaa-0001", _version("aaaa-0001", 2, minute=1))
        assert await _lineage(relational) == [("aaaa-0001-v1", "aaaa-0001-v2")]
        history = await relational.get_version_history("aaaa-0001")
        assert [v.version for v in history] == [2, 1]


class TestVersions:
    async def test_index_version_is_idempotent(self, relational: RelationalIndex) -> None:
        version = _version("aaaa-0001", 2, metadata={"k": 1}, changelog="fix")
        await relational.index_version(version)
        await relational.index_version(version)
        loaded = await relational.get_version_by_number("aaaa-0001", 2)
        assert loaded is not None
        assert loaded.metadata == {"k": 1}
        assert loaded.changelog == "fix"
        assert loaded.parent_version_id == "aaaa-0001-v1"
        assert await _lineage(relational) == [("aaaa-0001-v1", "aaaa-0001-v2")]

    async def test_versions_for_name(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.create_component(_component("bbbb-0002"))
        await relational.create_component(_component("cccc-0003", "other"))
        await relational.index_version(_version("bbbb-0002", 1, minute=2))
        await relational.index_version(_version("aaaa-0001", 1, minute=1))
        await relational.index_version(_version("cccc-0003", 1, minute=3))
        found = await relational.versions_for_name("toggle")
        assert [v.id for v in found] == ["aaaa-0001-v1", "bbbb-0002-v1"]


class TestListing:
    async def _fill(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001", "alpha", minute=1))
        await relational.create_component(
            _component("bbbb-0002", "beta", minute=2, kind=CodeFile(file_type="css"))
        )
        await relational.create_component(
            _component("cccc-0003", "gamma", minute=3, status=ComponentStatus.PUBLISHED)
        )

    async def test_default_order(self, relational: RelationalIndex) -> None:
        await self._fill(relational)
        listed = await relational.list_components()
        assert [c.id for c in listed] == ["cccc-0003", "bbbb-0002", "aaaa-0001"]

    async def test_filters(self, relational: RelationalIndex) -> None:
        await self._fill(relational)
        css = await relational.list_components(ComponentFilter(file_type="css"))
        assert [c.id for c in css] == ["bbbb-0002"]
        published = ComponentFilter(status=ComponentStatus.PUBLISHED)
        assert await relational.count_components(published) == 1
        assert await relational.count_components() == 3

    async def test_order_and_paging(self, relational: RelationalIndex) -> None:
        await self._fill(relational)
        page = await relational.list_components(
            order_by="canonical_name", descending=False, limit=2, offset=1
        )
        assert [c.canonical_name for c in page] == ["beta", "gamma"]

    async def test_bad_order(self, relational: RelationalIndex) -> None:
        with pytest.raises(ComponentValidationError, match="Cannot order by"):
            await relational.list_components(order_by="id; drop table")

    async def test_bad_limit(self, relational: RelationalIndex) -> None:
        with pytest.raises(ComponentValidationError):
            await relational.list_components(limit=0)

    async def test_expired_drafts(self, relational: RelationalIndex) -> None:
        await self._fill(relational)
        await relational.create_component(_component("dddd-0004", "clean", has_draft=False))
        now = T0 + timedelta(minutes=62)
        expired = await relational.find_expired_drafts(60 * 60 * 1000, now=now)
        assert [c.id for c in expired] == ["aaaa-0001"]
        assert len(await relational.find_expired_drafts(0, now=now, limit=2)) == 2


class TestDelete:
    async def test_delete_repoints_latest(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.create_component(_component("bbbb-0002"))
        await relational.publish_component("aaaa-0001", _version("aaaa-0001", minute=1))
        await relational.publish_component("bbbb-0002", _version("bbbb-0002", minute=2))
        ref = await relational.get_ref("toggle", "latest")
        assert ref is not None
        assert ref.target_id == "bbbb-0002-v1"

        assert await relational.delete_component("bbbb-0002")
        ref = await relational.get_ref("toggle", "latest")
        assert ref is not None
        assert ref.target_id == "aaaa-0001-v1"
        assert await relational.get_version("bbbb-0002-v1") is None
        assert await relational.get_component("bbbb-0002") is None

    async def test_delete_last_drops_latest(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.publish_component("aaaa-0001", _version("aaaa-0001"))
        await relational.set_ref("toggle", "stable", "aaaa-0001-v1")
        assert await relational.delete_component("aaaa-0001")
        assert await relational.get_refs("toggle") == []

    async def test_delete_missing(self, relational: RelationalIndex) -> None:
        assert not await relational.delete_component("ffff-ffff")

    async def test_delete_clears_edges(self, relational: RelationalIndex) -> None:
        await relational.create_component(_component("aaaa-0001"))
        await relational.replace_dependencies("aaaa-0001", ["bbbb-0002"])
        await relational.delete_component("aaaa-0001")
        assert await relational.list_dependency_edges() == []


class TestRefs:
    async def test_set_get_delete(self, relational: RelationalIndex) -> None:
        ref = await relational.set_ref("toggle", "stable", "aaaa-0001-v1")
        assert ref.target_id == "aaaa-0001-v1"
        await relational.set_ref("toggle", "stable", "aaaa-0001-v2")
        await relational.set_ref("toggle", "beta", "aaaa-0001-v3")
        refs = await relational.get_refs("toggle")
        assert [(r.ref_name, r.target_id) for r in refs] == [
            ("beta", "aaaa-0001-v3"),
            ("stable", "aaaa-0001-v2"),
        ]
        assert await relational.delete_ref("toggle", "beta")
        assert not await relational.delete_ref("toggle", "beta")
        assert await relational.get_ref("toggle", "beta") is None


class TestDependencies:
    async def test_replace_and_query(self, relational: RelationalIndex) -> None:
        await relational.replace_dependencies("aaaa-0001", ["cccc-0003", "bbbb-0002", "aaaa-0001"])
        await relational.replace_dependencies("dddd-0004", ["bbbb-0002"])
        assert await relational.list_dependency_edges() == [
            ("aaaa-0001", "bbbb-0002"),
            ("aaaa-0001", "cccc-0003"),
            ("dddd-0004", "bbbb-0002"),
        ]
        await relational.replace_dependencies("aaaa-0001", [])
        assert await relational.list_dependency_edges() == [("dddd-0004", "bbbb-0002")]
