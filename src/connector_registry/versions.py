"""
Version Constraint Engine - Semantic version parsing and range matching.

Follows SemVer 2.0.0 precedence (build metadata is ignored) and accepts
npm-style range expressions:

    *   x   ""              any version
    1.2.3   =1.2.3          exact pin
    >=1.0.0 <2.0.0          comparator set (whitespace = AND)
    ^1.2.0  ~1.2.0          caret / tilde ranges
    1.x     1.2.*           x-ranges
    1.0.0 - 2.0.0           hyphen range (inclusive)
    ^1.0.0 || ^2.0.0        union of comparator sets

Pre-release versions are matched by plain precedence, so ``1.3.0-beta.1``
satisfies ``^1.0.0``. Upper bounds derived from caret, tilde and x-ranges
are exclusive at ``X.0.0-0`` so that ``2.0.0-beta`` does not satisfy ``^1.0.0``.

Malformed input raises InvalidVersionFormat; nothing is coerced.
"""

from __future__ import annotations

import re
from functools import lru_cache, total_ordering
from typing import Iterable, List, Optional, Sequence, Tuple, Union


_IDENT = r"(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"

_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    rf"(?:-({_IDENT}(?:\.{_IDENT})*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

_PARTIAL_RE = re.compile(
    r"^(0|[1-9]\d*|[xX*])"
    r"(?:\.(0|[1-9]\d*|[xX*]))?"
    r"(?:\.(0|[1-9]\d*|[xX*]))?"
    rf"(?:-({_IDENT}(?:\.{_IDENT})*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

_OPERATOR_RE = re.compile(r"^(<=|>=|<|>|=|\^|~>|~)?(.*)$")

_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")

_WILDCARDS = {"x", "X", "*"}


class InvalidVersionFormat(ValueError):
    """A version string does not follow semantic versioning."""

    def __init__(self, value: object, reason: str = "not a valid semantic version") -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid version '{value}': {reason}")


class InvalidRangeFormat(InvalidVersionFormat):
    """A version range expression cannot be parsed."""

    def __init__(self, value: object, reason: str = "not a valid version range") -> None:
        super().__init__(value, reason)
        self.args = (f"Invalid version range '{value}': {reason}",)


PrereleaseId = Union[int, str]


def _compare_prerelease(a: Tuple[PrereleaseId, ...], b: Tuple[PrereleaseId, ...]) -> int:
    # A release sorts above any of its pre-releases.
    if not a and not b:
        return 0
    if not a:
        return 1
    if not b:
        return -1

    for left, right in zip(a, b):
        if left == right:
            continue
        left_num = isinstance(left, int)
        right_num = isinstance(right, int)
        if left_num and right_num:
            return -1 if left < right else 1
        if left_num:
            return -1
        if right_num:
            return 1
        return -1 if left < right else 1

    if len(a) == len(b):
        return 0
    return -1 if len(a) < len(b) else 1


@total_ordering
class Version:
    """
    An immutable semantic version.

    Equality and ordering follow SemVer precedence, so ``1.0.0+a == 1.0.0+b``.
    The original text (including build metadata) is kept in ``raw``.
    """

    __slots__ = ("major", "minor", "patch", "prerelease", "build", "raw")

    def __init__(
        self,
        major: int,
        minor: int,
        patch: int,
        prerelease: Tuple[PrereleaseId, ...] = (),
        build: Tuple[str, ...] = (),
        raw: Optional[str] = None,
    ) -> None:
        object.__setattr__(self, "major", major)
        object.__setattr__(self, "minor", minor)
        object.__setattr__(self, "patch", patch)
        object.__setattr__(self, "prerelease", tuple(prerelease))
        object.__setattr__(self, "build", tuple(build))
        object.__setattr__(self, "raw", raw)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("Version is immutable")

    @classmethod
    def parse(cls, value: Union[str, "Version"]) -> "Version":
        """Parse a strict semantic version string."""
        if isinstance(value, Version):
            return value
        if not isinstance(value, str):
            raise InvalidVersionFormat(value, "expected a string")

        text = value.strip()
        match = _SEMVER_RE.match(text)
        if not match:
            raise InvalidVersionFormat(value)

        major, minor, patch, pre, build = match.groups()
        prerelease = tuple(int(p) if p.isdigit() else p for p in pre.split(".")) if pre else ()
        build_ids = tuple(build.split(".")) if build else ()
        return cls(int(major), int(minor), int(patch), prerelease, build_ids, raw=text)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def release(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def compare(self, other: Union[str, "Version"]) -> int:
        """Return -1, 0 or 1 by SemVer precedence."""
        other = Version.parse(other)
        if self.release != other.release:
            return -1 if self.release < other.release else 1
        return _compare_prerelease(self.prerelease, other.prerelease)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash((self.release, self.prerelease))

    def __str__(self) -> str:
        if self.raw is not None:
            return self.raw
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(str(p) for p in self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text

    def __repr__(self) -> str:
        return f"Version('{self}')"


# Smallest possible pre-release of a release, used for exclusive upper bounds.
def _floor(major: int, minor: int, patch: int) -> Version:
    return Version(major, minor, patch, (0,))


class Comparator:
    """A single ``<op><version>`` test."""

    __slots__ = ("operator", "version")

    _OPS = ("<", "<=", ">", ">=", "=")

    def __init__(self, operator: str, version: Version) -> None:
        if operator not in self._OPS:
            raise InvalidRangeFormat(operator, "unknown comparison operator")
        self.operator = operator
        self.version = version

    def test(self, version: Version) -> bool:
        result = version.compare(self.version)
        if self.operator == "=":
            return result == 0
        if self.operator == "<":
            return result < 0
        if self.operator == "<=":
            return result <= 0
        if self.operator == ">":
            return result > 0
        return result >= 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Comparator):
            return NotImplemented
        return self.operator == other.operator and self.version == other.version

    def __hash__(self) -> int:
        return hash((self.operator, self.version))

    def __str__(self) -> str:
        if self.operator == "=":
            return str(self.version)
        return f"{self.operator}{self.version}"

    def __repr__(self) -> str:
        return f"Comparator('{self}')"


ComparatorSet = Tuple[Comparator, ...]

# Matches nothing: no version sorts below 0.0.0-0.
_NOTHING: ComparatorSet = (Comparator("<", _floor(0, 0, 0)),)


def _parse_partial(text: str, source: str):
    match = _PARTIAL_RE.match(text)
    if not match:
        raise InvalidRangeFormat(source, f"cannot parse version '{text}'")

    major, minor, patch, pre, build = match.groups()

    def num(part: Optional[str]) -> Optional[int]:
        if part is None or part in _WILDCARDS:
            return None
        return int(part)

    parts = [num(major), num(minor), num(patch)]
    # Everything after a wildcard is a wildcard too.
    for i in range(1, 3):
        if parts[i - 1] is None:
            parts[i] = None

    if pre and parts[2] is None:
        raise InvalidRangeFormat(source, "pre-release tags require a full version")

    prerelease = tuple(int(p) if p.isdigit() else p for p in pre.split(".")) if pre else ()
    build_ids = tuple(build.split(".")) if build else ()
    return parts[0], parts[1], parts[2], prerelease, build_ids


def _expand(operator: str, text: str, source: str) -> ComparatorSet:
    major, minor, patch, prerelease, build = _parse_partial(text, source)
    full = patch is not None

    if full:
        version = Version(major, minor, patch, prerelease, build)

    if operator in ("", "="):
        if full:
            return (Comparator("=", version),)
        if major is None:
            return ()
        if minor is None:
            return (Comparator(">=", Version(major, 0, 0)), Comparator("<", _floor(major + 1, 0, 0)))
        return (Comparator(">=", Version(major, minor, 0)), Comparator("<", _floor(major, minor + 1, 0)))

    if operator == "^":
        if major is None:
            return ()
        if full:
            if major > 0:
                upper = _floor(major + 1, 0, 0)
            elif minor > 0:
                upper = _floor(0, minor + 1, 0)
            else:
                upper = _floor(0, 0, patch + 1)
            return (Comparator(">=", version), Comparator("<", upper))
        if minor is None:
            return (Comparator(">=", Version(major, 0, 0)), Comparator("<", _floor(major + 1, 0, 0)))
        upper = _floor(major + 1, 0, 0) if major > 0 else _floor(0, minor + 1, 0)
        return (Comparator(">=", Version(major, minor, 0)), Comparator("<", upper))

    if operator in ("~", "~>"):
        if major is None:
            return ()
        if minor is None:
            return (Comparator(">=", Version(major, 0, 0)), Comparator("<", _floor(major + 1, 0, 0)))
        lower = version if full else Version(major, minor, 0)
        return (Comparator(">=", lower), Comparator("<", _floor(major, minor + 1, 0)))

    if operator == ">":
        if full:
            return (Comparator(">", version),)
        if major is None:
            return _NOTHING
        if minor is None:
            return (Comparator(">=", Version(major + 1, 0, 0)),)
        return (Comparator(">=", Version(major, minor + 1, 0)),)

    if operator == ">=":
        if full:
            return (Comparator(">=", version),)
        if major is None:
            return ()
        return (Comparator(">=", Version(major, minor or 0, 0)),)

    if operator == "<":
        if full:
            return (Comparator("<", version),)
        if major is None:
            return _NOTHING
        if minor is None:
            return (Comparator("<", _floor(major, 0, 0)),)
        return (Comparator("<", _floor(major, minor, 0)),)

    if operator == "<=":
        if full:
            return (Comparator("<=", version),)
        if major is None:
            return ()
        if minor is None:
            return (Comparator("<", _floor(major + 1, 0, 0)),)
        return (Comparator("<", _floor(major, minor + 1, 0)),)

    raise InvalidRangeFormat(source, f"unknown operator '{operator}'")


def _parse_hyphen(lower_text: str, upper_text: str, source: str) -> ComparatorSet:
    lower = _expand(">=", lower_text, source)
    major, minor, patch, prerelease, build = _parse_partial(upper_text, source)
    if patch is not None:
        upper: ComparatorSet = (Comparator("<=", Version(major, minor, patch, prerelease, build)),)
    else:
        upper = _expand("<=", upper_text, source)
    return lower + upper


def _parse_set(text: str, source: str) -> ComparatorSet:
    text = text.strip()
    if text in ("", "*", "x", "X"):
        return ()

    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        return _parse_hyphen(hyphen.group(1), hyphen.group(2), source)

    # Allow ">= 1.0.0" as well as ">=1.0.0".
    text = re.sub(r"(<=|>=|<|>|=|\^|~>|~)\s+", r"\1", text)

    comparators: List[Comparator] = []
    for token in text.split():
        match = _OPERATOR_RE.match(token)
        operator, rest = match.group(1) or "", match.group(2)
        if not rest:
            raise InvalidRangeFormat(source, f"operator '{operator}' has no version")
        comparators.extend(_expand(operator, rest, source))
    return tuple(comparators)


class VersionRange:
    """
    A version range in disjunctive normal form.

    ``alternatives`` is a tuple of comparator sets; a version satisfies the
    range when it passes every comparator of at least one set. An empty set
    matches every version.
    """

    __slots__ = ("alternatives", "raw")

    def __init__(self, alternatives: Sequence[ComparatorSet], raw: Optional[str] = None) -> None:
        if not alternatives:
            raise InvalidRangeFormat(raw or "", "a range needs at least one comparator set")
        self.alternatives: Tuple[ComparatorSet, ...] = tuple(tuple(a) for a in alternatives)
        self.raw = raw

    @classmethod
    def parse(cls, value: Union[str, "VersionRange"]) -> "VersionRange":
        if isinstance(value, VersionRange):
            return value
        if not isinstance(value, str):
            raise InvalidRangeFormat(value, "expected a string")
        return _parse_range_cached(value.strip())

    @classmethod
    def any(cls) -> "VersionRange":
        return cls([()], raw="*")

    @classmethod
    def exact(cls, version: Union[str, Version]) -> "VersionRange":
        parsed = Version.parse(version)
        return cls([(Comparator("=", parsed),)], raw=str(parsed))

    @property
    def is_any(self) -> bool:
        return any(not alt for alt in self.alternatives)

    def contains(self, version: Union[str, Version]) -> bool:
        parsed = Version.parse(version)
        return any(all(c.test(parsed) for c in alt) for alt in self.alternatives)

    __contains__ = contains

    def intersect(self, other: Union[str, "VersionRange"]) -> "VersionRange":
        """Return the range of versions satisfying both ranges."""
        other = VersionRange.parse(other)
        if self.is_any:
            return other
        if other.is_any:
            return self
        alternatives = [a + b for a in self.alternatives for b in other.alternatives]
        return VersionRange(alternatives)

    def filter(self, versions: Iterable[Union[str, Version]]) -> List[Version]:
        return [v for v in (Version.parse(x) for x in versions) if self.contains(v)]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionRange):
            return NotImplemented
        return self.alternatives == other.alternatives

    def __hash__(self) -> int:
        return hash(self.alternatives)

    def __str__(self) -> str:
        if self.raw is not None:
            return self.raw
        sets = [" ".join(str(c) for c in alt) or "*" for alt in self.alternatives]
        return " || ".join(sets)

    def __repr__(self) -> str:
        return f"VersionRange('{self}')"


@lru_cache(maxsize=1024)
def _parse_range_cached(text: str) -> VersionRange:
    parts = text.split("||")
    return VersionRange([_parse_set(part, text) for part in parts], raw=text or "*")


# ==============================================================================
# Functional API
# ==============================================================================

def parse_version(value: Union[str, Version]) -> Version:
    return Version.parse(value)


def parse_range(value: Union[str, VersionRange]) -> VersionRange:
    return VersionRange.parse(value)


def compare(v1: Union[str, Version], v2: Union[str, Version]) -> int:
    """Compare two versions: -1 if v1 < v2, 0 if equal precedence, 1 otherwise."""
    return Version.parse(v1).compare(v2)


def satisfies(version: Union[str, Version], range_: Union[str, VersionRange]) -> bool:
    return VersionRange.parse(range_).contains(version)


def is_prerelease(version: Union[str, Version]) -> bool:
    return Version.parse(version).is_prerelease


def max_satisfying(
    versions: Iterable[Union[str, Version]],
    range_: Union[str, VersionRange],
) -> Optional[Version]:
    """Highest version in ``versions`` that satisfies ``range_``."""
    matching = VersionRange.parse(range_).filter(versions)
    return max(matching) if matching else None


__all__ = [
    "Version",
    "VersionRange",
    "Comparator",
    "InvalidVersionFormat",
    "InvalidRangeFormat",
    "parse_version",
    "parse_range",
    "compare",
    "satisfies",
    "is_prerelease",
    "max_satisfying",
]
