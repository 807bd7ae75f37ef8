"""Tests for reference-string parsing and version selection."""

from __future__ import annotations

import pytest

from forgevault.versioning.refs import RefKind, parse_named_ref, parse_ref, select_version


class TestParseRef:
    @pytest.mark.parametrize("ref", ["3f9a-0c1e", "3f9a-0c1e-v2", "toggle-v2-9b1f04ad"])
    def test_ids(self, ref: str) -> None:
        parsed = parse_ref(ref)
        assert parsed.kind is RefKind.ID
        assert parsed.name == ref
        assert str(parsed) == ref

    def test_bare_name_means_latest(self) -> None:
        parsed = parse_ref("toggle")
        assert parsed.kind is RefKind.TAG
        assert (parsed.name, parsed.selector) == ("toggle", "latest")
        assert str(parsed) == "toggle@latest"

    def test_trailing_at_means_latest(self) -> None:
        assert parse_ref("toggle@").selector == "latest"

    def test_known_tags_are_case_insensitive(self) -> None:
        parsed = parse_ref("toggle@Stable")
        assert parsed.kind is RefKind.TAG
        assert parsed.selector == "stable"

    def test_custom_tag(self) -> None:
        parsed = parse_ref("toggle@prod")
        assert parsed.kind is RefKind.TAG
        assert parsed.selector == "prod"

    def test_exact_version(self) -> None:
        assert parse_ref("toggle@1.2.3").kind is RefKind.EXACT
        parsed = parse_ref("toggle@v1.2.3")
        assert parsed.kind is RefKind.EXACT
        assert parsed.selector == "1.2.3"

    @pytest.mark.parametrize("selector", ["^1.2", "~1.0", "1.x", ">=1 <3", "1.x || 2.x"])
    def test_ranges(self, selector: str) -> None:
        parsed = parse_ref(f"toggle@{selector}")
        assert parsed.kind is RefKind.RANGE
        assert parsed.selector == selector

    def test_scoped_name_splits_on_last_at(self) -> None:
        parsed = parse_ref("@scope/button@1.0.0")
        assert parsed.name == "@scope/button"
        assert parsed.kind is RefKind.EXACT

    def test_id_shaped_name_with_selector_is_named(self) -> None:
        parsed = parse_ref("3f9a-0c1e@latest")
        assert parsed.kind is RefKind.TAG
        assert parsed.name == "3f9a-0c1e"

    def test_empty(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            parse_ref("   ")

    def test_missing_name(self) -> None:
        with pytest.raises(ValueError, match="no name"):
            parse_named_ref("@latest")


class TestSelectVersion:
    CANDIDATES = [("a", "1.0.0"), ("b", "1.2.0"), ("c", "1.2.0"), ("d", "2.0.0")]

    @staticmethod
    def _semver(candidate: tuple[str, str]) -> str:
        return candidate[1]

    def test_exact_prefers_later_candidate(self) -> None:
        chosen = select_version(parse_ref("x@1.2.0"), self.CANDIDATES, self._semver)
        assert chosen == ("c", "1.2.0")

    def test_range_picks_highest(self) -> None:
        chosen = select_version(parse_ref("x@^1.0"), self.CANDIDATES, self._semver)
        assert chosen == ("c", "1.2.0")

    def test_no_match(self) -> None:
        assert select_version(parse_ref("x@^3"), self.CANDIDATES, self._semver) is None
        assert select_version(parse_ref("x@3.0.0"), self.CANDIDATES, self._semver) is None

    def test_tags_are_not_selectable(self) -> None:
        with pytest.raises(ValueError):
            select_version(parse_ref("x@stable"), self.CANDIDATES, self._semver)
