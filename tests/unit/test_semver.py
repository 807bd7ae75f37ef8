"""Tests for semantic-version arithmetic and range matching."""

from __future__ import annotations

import pytest
from semver import Version

from forgevault.versioning.semver import (
    BumpKind,
    InvalidRangeError,
    bump,
    coerce_version,
    is_valid_range,
    is_valid_version,
    parse_range,
    parse_version,
)


class TestVersions:
    def test_initial_version(self) -> None:
        assert bump(None, "major") == "1.0.0"
        assert bump(None) == "1.0.0"

    @pytest.mark.parametrize(
        ("kind", "expected"),
        [("major", "2.0.0"), ("minor", "1.3.0"), ("patch", "1.2.4")],
    )
    def test_bump(self, kind: str, expected: str) -> None:
        assert bump("1.2.3", kind) == expected

    def test_bump_partial_version(self) -> None:
        assert bump("1.2", BumpKind.MINOR) == "1.3.0"

    def test_bump_rejects_garbage(self) -> None:
        with pytest.raises(ValueError, match="Not a semantic version"):
            bump("banana")

    def test_bump_rejects_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            bump("1.0.0", "huge")

    def test_parse_version_accepts_v_prefix(self) -> None:
        assert parse_version("v1.2.3") == Version(1, 2, 3)
        assert parse_version("nope") is None
        assert is_valid_version("=2.0.0")

    def test_coerce(self) -> None:
        assert coerce_version("1") == "1.0.0"
        assert coerce_version("2.3") == "2.3.0"
        assert coerce_version("x") is None
        assert coerce_version("abc") is None



class TestRanges:
    @pytest.mark.parametrize(
        ("range_", "version", "expected"),
        [
            ("^1.2.3", "1.2.3", True),
            ("^1.2.3", "1.9.0", True),
            ("^1.2.3", "2.0.0", False),
            ("^1.2.3", "1.2.2", False),
            ("^0.2.3", "0.2.9", True),
            ("^0.2.3", "0.3.0", False),
            ("^0.0.3", "0.0.3", True),
            ("^0.0.3", "0.0.4", False),
            ("~1.2.3", "1.2.9", True),
            ("~1.2.3", "1.3.0", False),
            ("1.x", "1.99.0", True),
            ("1.x", "2.0.0", False),
            ("1.2.*", "1.2.5", True),
            ("1.2.*", "1.3.0", False),
            ("*", "7.1.0", True),
            (">=1.0.0 <2.0.0", "1.5.0", True),
            (">=1.0.0 <2.0.0", "2.0.0", False),
            (">= 1.0.0", "1.0.0", True),
            (">1.2", "1.2.9", False),
            (">1.2", "1.3.0", True),
            ("<=1.2", "1.2.9", True),
            ("<=1.2", "1.3.0", False),
            ("=1.2.3", "1.2.3", True),
            ("1.0.0 - 2.0.0", "2.0.0", True),
            ("1.0.0 - 2.0.0", "2.0.1", False),
            ("1.0.0 - 2", "2.9.0", True),
            ("1.0.0 - 2", "3.0.0", False),
            ("^1.0.0 || ^3.0.0", "3.1.0", True),
            ("^1.0.0 || ^3.0.0", "2.0.0", False),
        ],
    )
    def test_range_matching(self, range_: str, version: str, expected: bool) -> None:
        assert parse_range(range_).test(version) is expected

    def test_prereleases_excluded_by_default(self) -> None:
        assert not parse_range("*").test("1.0.0-beta")
        assert not parse_range("^1.0.0").test("1.5.0-rc.1")

    def test_prerelease_opt_in_is_per_release_line(self) -> None:
        assert parse_range("^1.2.3-beta.1").test("1.2.3-beta.2")
        assert not parse_range("^1.2.3-beta.1").test("1.3.0-beta.1")

    def test_invalid_version_never_satisfies(self) -> None:
        assert not parse_range("*").test("garbage")

    def test_invalid_range(self) -> None:
        assert not is_valid_range("not a range")
        assert not is_valid_range("prod")
        assert is_valid_range("^1.2")
        with pytest.raises(InvalidRangeError):
            parse_range("^banana")

    def test_compiled_range_is_reusable(self) -> None:
        compiled = parse_range("^2")
        assert compiled.test("2.5.0")
        assert compiled.test(Version(2, 1, 0))
        assert not compiled.test("3.0.0")
        assert str(compiled) == ">=2.0.0 <3.0.0"
