"""Semantic-version arithmetic and npm-style range matching.

Parsing and ordering of individual versions is delegated to the ``semver``
package; ranges (``^1.2``, ``~1.4.0``, ``1.x``, ``>=1 <3``, ``1.0.0 - 2.0.0``,
``a || b``) are compiled into comparator sets here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from semver import Version

INITIAL_VERSION = "1.0.0"


class BumpKind(StrEnum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class InvalidRangeError(ValueError):
    """A version range string could not be parsed."""


# -- single versions ---------------------------------------------------------


def parse_version(text: str | Version) -> Version | None:
    if isinstance(text, Version):
        return text
    text = text.strip()
    if text[:1] in ("v", "V", "="):
        text = text[1:]
    try:
        return Version.parse(text)
    except ValueError:
        return None


def is_valid_version(text: str) -> bool:
    return parse_version(text) is not None


def coerce_version(text: str) -> str | None:
    """Complete a partial version: ``"1"`` -> ``"1.0.0"``, ``"2.3"`` -> ``"2.3.0"``."""
    parts = _parse_partial(text)
    if parts is None or parts[0] is None:
        return None
    major, minor, patch, prerelease = parts
    return str(Version(major, minor or 0, patch or 0, prerelease))


def bump(current: str | None, kind: BumpKind | str = BumpKind.PATCH) -> str:
    """Next semver after ``current``. With no current version, ``1.0.0``."""
    if current is None:
        return INITIAL_VERSION
    kind = BumpKind(kind)
    version = parse_version(current)
    if version is None:
        coerced = coerce_version(current)
        if coerced is None:
            raise ValueError(f"Not a semantic version: {current!r}")
        version = Version.parse(coerced)
    match kind:
        case BumpKind.MAJOR:
            return str(version.bump_major())
        case BumpKind.MINOR:
            return str(version.bump_minor())
        case BumpKind.PATCH:
            return str(version.bump_patch())


# -- ranges ------------------------------------------------------------------

_PARTIAL_RE = re.compile(
    r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?"
    r"(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_OPERATOR_GAP_RE = re.compile(r"(>=|<=|>|<|=|\^|~>?)\s+")
_OPERATOR_RE = re.compile(r"^(>=|<=|>|<|=)")

_Partial = tuple[int | None, int | None, int | None, str | None]


@dataclass(frozen=True)
class Comparator:
    op: str
    version: Version

    def test(self, version: Version) -> bool:
        cmp = version.compare(self.version)
        match self.op:
            case ">=":
                return cmp >= 0
            case ">":
                return cmp > 0
            case "<=":
                return cmp <= 0
            case "<":
                return cmp < 0
            case _:
                return cmp == 0

    def __str__(self) -> str:
        return f"{self.op}{self.version}"


_NOTHING = (Comparator("<", Version(0, 0, 0)),)


@dataclass(frozen=True)
class VersionRange:
    """A union of comparator sets; an empty set matches any release."""

    raw: str
    alternatives: tuple[tuple[Comparator, ...], ...]

    def test(self, version: str | Version) -> bool:
        parsed = parse_version(version)
        if parsed is None:
            return False
        return any(_test_set(comparators, parsed) for comparators in self.alternatives)

    def __str__(self) -> str:
        return " || ".join(" ".join(str(c) for c in s) or "*" for s in self.alternatives)


def _test_set(comparators: tuple[Comparator, ...], version: Version) -> bool:
    if not all(c.test(version) for c in comparators):
        return False
    if version.prerelease is None:
        return True
    # Prereleases only match when a comparator in the set opts into that exact release line
    return any(
        c.version.prerelease is not None
        and (c.version.major, c.version.minor, c.version.patch)
        == (version.major, version.minor, version.patch)
        for c in comparators
    )


def _parse_partial(text: str) -> _Partial | None:
    match = _PARTIAL_RE.match(text.strip())
    if match is None:
        return None
    numbers: list[int | None] = []
    wildcard = False
    for group in match.groups()[:3]:
        if group is None or group in ("x", "X", "*") or wildcard:
            wildcard = True
            numbers.append(None)
        else:
            numbers.append(int(group))
    prerelease = match.group(4) if numbers[2] is not None else None
    return numbers[0], numbers[1], numbers[2], prerelease


def _lower(parts: _Partial) -> Version:
    major, minor, patch, prerelease = parts
    return Version(major or 0, minor or 0, patch or 0, prerelease)


def _upper(parts: _Partial) -> Version | None:
    """Exclusive upper bound of a partial version, or None if it is complete."""
    major, minor, patch, _ = parts
    if major is None:
        return None
    if minor is None:
        return Version(major + 1, 0, 0)
    if patch is None:
        return Version(major, minor + 1, 0)
    return None


def _caret(parts: _Partial) -> tuple[Comparator, ...]:
    major, minor, patch, _ = parts
    if major is None:
        return ()
    if major > 0:
        upper = Version(major + 1, 0, 0)
    elif minor is None:
        upper = Version(1, 0, 0)
    elif minor > 0:
        upper = Version(0, minor + 1, 0)
    elif patch is None:
        upper = Version(0, 1, 0)
    else:
        upper = Version(0, 0, patch + 1)
    return Comparator(">=", _lower(parts)), Comparator("<", upper)


def _tilde(parts: _Partial) -> tuple[Comparator, ...]:
    major, minor, _, _ = parts
    if major is None:
        return ()
    upper = Version(major + 1, 0, 0) if minor is None else Version(major, minor + 1, 0)
    return Comparator(">=", _lower(parts)), Comparator("<", upper)


def _xrange(op: str, parts: _Partial) -> tuple[Comparator, ...]:
    if parts[0] is None:
        return _NOTHING if op in (">", "<") else ()
    upper = _upper(parts)
    if upper is None:
        return (Comparator(op or "=", _lower(parts)),)
    lower = _lower(parts)
    match op:
        case ">":
            return (Comparator(">=", upper),)
        case ">=":
            return (Comparator(">=", lower),)
        case "<":
            return (Comparator("<", lower),)
        case "<=":
            return (Comparator("<", upper),)
        case _:
            return Comparator(">=", lower), Comparator("<", upper)


def _expand(token: str) -> tuple[Comparator, ...]:
    if token.startswith("^"):
        expand, body, op = _caret, token[1:], ""
    elif token.startswith("~"):
        expand, body, op = _tilde, token[2:] if token.startswith("~>") else token[1:], ""
    else:
        match = _OPERATOR_RE.match(token)
        op = match.group(1) if match else ""
        body = token[len(op):]
        expand = None
    parts = _parse_partial(body) if body else (None, None, None, None)
    if parts is None:
        raise InvalidRangeError(f"Invalid version range component: {token!r}")
    if expand is not None:
        return expand(parts)
    return _xrange(op, parts)


def _hyphen(low: str, high: str) -> tuple[Comparator, ...]:
    low_parts, high_parts = _parse_partial(low), _parse_partial(high)
    if low_parts is None or high_parts is None:
        raise InvalidRangeError(f"Invalid hyphen range: {low} - {high}")
    comparators: list[Comparator] = []
    if low_parts[0] is not None:
        comparators.append(Comparator(">=", _lower(low_parts)))
    if high_parts[0] is not None:
        upper = _upper(high_parts)
        if upper is None:
            comparators.append(Comparator("<=", _lower(high_parts)))
        else:
            comparators.append(Comparator("<", upper))
    return tuple(comparators)


def parse_range(text: str) -> VersionRange:
    """Compile an npm-style range expression."""
    alternatives: list[tuple[Comparator, ...]] = []
    for alternative in text.split("||"):
        hyphen = _HYPHEN_RE.match(alternative)
        if hyphen:
            alternatives.append(_hyphen(hyphen.group(1), hyphen.group(2)))
            continue
        tokens = _OPERATOR_GAP_RE.sub(r"\1", alternative.strip()).split()
        comparators: list[Comparator] = []
        for token in tokens or ["*"]:
            comparators.extend(_expand(token))
        alternatives.append(tuple(comparators))
    return VersionRange(raw=text, alternatives=tuple(alternatives))


def is_valid_range(text: str) -> bool:
    try:
        parse_range(text)
    except InvalidRangeError:
        return False
    return True


