from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from qlserver.errors import InvalidConfiguration

# Pack name -> resolved on-disk location(s).
QlpackMap = Dict[str, List[Path]]

# Language id -> extractor location(s) reported by the engine.
LanguageMap = Dict[str, List[Path]]

# Ordered pair: managed heap flag, then off-heap flag.
HeapFlags = List[str]

_SEMVER_PATTERN = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_PARTIAL_PATTERN = re.compile(
    r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)

_COMPARATOR_PATTERN = re.compile(r"^(>=|<=|>|<|=|\^|~)?\s*(\S+)$")


@total_ordering
@dataclass(frozen=True, eq=False)
class EngineVersion:
    """Semantic version reported by the engine.

    Ordering and equality follow semver precedence: build metadata is
    ignored and a prerelease sorts before the matching release.
    """

    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...] = ()
    build: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "EngineVersion":
        """Parse ``major.minor.patch[-prerelease][+build]``.

        Raises:
            ValueError: If the text is not a semantic version.
        """
        match = _SEMVER_PATTERN.match(text.strip())
        if not match:
            raise ValueError(f"Not a semantic version: {text!r}")
        major, minor, patch, pre, build = match.groups()
        return cls(
            major=int(major),
            minor=int(minor),
            patch=int(patch),
            prerelease=tuple(pre.split(".")) if pre else (),
            build=tuple(build.split(".")) if build else (),
        )

    def _key(self) -> Tuple[Any, ...]:
        # A release outranks all of its prereleases; numeric identifiers
        # sort before alphanumeric ones.
        if not self.prerelease:
            pre_key: Tuple[Any, ...] = ((1,),)
        else:
            pre_key = tuple(
                (0, int(part), "") if part.isdigit() else (1, 0, part)
                for part in self.prerelease
            )
            pre_key = ((0,),) + pre_key
        return (self.major, self.minor, self.patch, pre_key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EngineVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "EngineVersion") -> bool:
        if not isinstance(other, EngineVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


@dataclass(frozen=True)
class _Comparator:
    op: str
    version: EngineVersion

    def matches(self, version: EngineVersion) -> bool:
        if self.op == ">=":
            return version >= self.version
        if self.op == ">":
            return version > self.version
        if self.op == "<=":
            return version <= self.version
        if self.op == "<":
            return version < self.version
        return version == self.version


def _expand_comparator(token: str, source: str) -> List[_Comparator]:
    match = _COMPARATOR_PATTERN.match(token)
    if not match:
        raise InvalidConfiguration(f"Invalid version range '{source}': bad comparator '{token}'")
    op, version_text = match.groups()
    partial = _PARTIAL_PATTERN.match(version_text)
    if not partial:
        raise InvalidConfiguration(f"Invalid version range '{source}': bad version '{version_text}'")

    major_s, minor_s, patch_s, pre = partial.groups()
    major = int(major_s)
    minor = int(minor_s) if minor_s is not None else 0
    patch = int(patch_s) if patch_s is not None else 0
    prerelease = tuple(pre.split(".")) if pre else ()
    base = EngineVersion(major, minor, patch, prerelease)

    if op == "^":
        if major > 0 or minor_s is None:
            upper = EngineVersion(major + 1, 0, 0)
        elif minor > 0 or patch_s is None:
            upper = EngineVersion(0, minor + 1, 0)
        else:
            upper = EngineVersion(0, 0, patch + 1)
        return [_Comparator(">=", base), _Comparator("<", upper)]

    if op == "~":
        if minor_s is None:
            upper = EngineVersion(major + 1, 0, 0)
        else:
            upper = EngineVersion(major, minor + 1, 0)
        return [_Comparator(">=", base), _Comparator("<", upper)]

    if op in (None, "=") and (minor_s is None or patch_s is None):
        # "2.4" means any 2.4.x
        if minor_s is None:
            upper = EngineVersion(major + 1, 0, 0)
        else:
            upper = EngineVersion(major, minor + 1, 0)
        return [_Comparator(">=", base), _Comparator("<", upper)]

    return [_Comparator(op or "=", base)]


@dataclass(frozen=True)
class VersionRange:
    """A required engine version range, e.g. ``">=2.4.0 <3.0.0 || ^4.1"``."""

    source: str
    alternatives: Tuple[Tuple[_Comparator, ...], ...]

    @classmethod
    def parse(cls, text: str) -> "VersionRange":
        """Parse a range expression.

        Raises:
            InvalidConfiguration: If the expression is malformed.
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidConfiguration(f"Invalid version range: {text!r}")

        alternatives = []
        for part in text.split("||"):
            # Allow ">= 2.4.0" by gluing a lone operator to its version.
            tokens = re.sub(r"(>=|<=|>|<|=|\^|~)\s+", r"\1", part.strip()).split()
            if not tokens:
                raise InvalidConfiguration(f"Invalid version range '{text}': empty alternative")
            comparators: List[_Comparator] = []
            for token in tokens:
                comparators.extend(_expand_comparator(token, text))
            alternatives.append(tuple(comparators))
        return cls(source=text.strip(), alternatives=tuple(alternatives))

    def contains(self, version: EngineVersion) -> bool:
        return any(
            all(comparator.matches(version) for comparator in alternative)
            for alternative in self.alternatives
        )

    def __contains__(self, version: EngineVersion) -> bool:
        return self.contains(version)

    def __str__(self) -> str:
        return self.source


VersionRangeLike = Union[VersionRange, str]


@dataclass
class QueryInfoByLanguage:
    """Languages a set of query files targets, as determined by the engine.

    Attributes:
        by_language: Language id -> query path -> per-query metadata.
        no_declared_language: Query path -> metadata for queries whose
            language could not be determined.
        multiple_declared_languages: Query path -> metadata for queries that
            depend on more than one language.
    """

    by_language: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    no_declared_language: Dict[str, Any] = field(default_factory=dict)
    multiple_declared_languages: Dict[str, Any] = field(default_factory=dict)

    @property
    def languages(self) -> Set[str]:
        return set(self.by_language)


@dataclass
class QuerySetup:
    """Library path and dbscheme the engine resolved for a query file."""

    library_path: List[Path]
    dbscheme: Path
    relative_name: Optional[str] = None
    compilation_cache: Optional[Path] = None


@dataclass
class DatabaseInfo:
    """Decoded ``resolve database`` output."""

    source_location_prefix: str
    languages: List[str] = field(default_factory=list)
    column_kind: Optional[str] = None
    unicode_newlines: bool = False
    source_archive_zip: Optional[Path] = None
    source_archive_root: Optional[Path] = None
    dataset_folder: Optional[Path] = None
    logs_folder: Optional[Path] = None
