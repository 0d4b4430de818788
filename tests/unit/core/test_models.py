"""Tests for core models."""

from __future__ import annotations

import pytest

from qlserver.core.models import EngineVersion, QueryInfoByLanguage, VersionRange
from qlserver.errors import InvalidConfiguration


class TestEngineVersion:
    """Tests for EngineVersion parsing and ordering."""

    def test_parse_release(self) -> None:
        """Test parsing a release version."""
        version = EngineVersion.parse("2.4.0")
        assert (version.major, version.minor, version.patch) == (2, 4, 0)
        assert version.prerelease == ()
        assert str(version) == "2.4.0"

    def test_parse_prerelease_and_build(self) -> None:
        """Test parsing prerelease and build parts."""
        version = EngineVersion.parse("v2.5.0-beta.1+20210101")
        assert version.prerelease == ("beta", "1")
        assert version.build == ("20210101",)
        assert str(version) == "2.5.0-beta.1+20210101"

    @pytest.mark.parametrize("text", ["", "2", "2.4", "2.4.x", "02.4.0", "2.4.0-", "latest"])
    def test_parse_rejects_invalid(self, text: str) -> None:
        """Test that invalid versions are rejected."""
        with pytest.raises(ValueError):
            EngineVersion.parse(text)

    def test_ordering(self) -> None:
        """Test semver precedence ordering."""
        ordered = [
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-alpha.beta",
            "1.0.0-beta",
            "1.0.0-beta.2",
            "1.0.0-beta.11",
            "1.0.0-rc.1",
            "1.0.0",
            "1.0.1",
            "1.10.0",
            "2.0.0",
        ]
        versions = [EngineVersion.parse(text) for text in ordered]
        assert sorted(reversed(versions)) == versions

    def test_build_metadata_ignored_for_equality(self) -> None:
        """Test that build metadata does not affect equality."""
        assert EngineVersion.parse("2.4.0+abc") == EngineVersion.parse("2.4.0+def")
        assert hash(EngineVersion.parse("2.4.0+abc")) == hash(EngineVersion.parse("2.4.0"))

    def test_immutable(self) -> None:
        """Test that versions are frozen."""
        version = EngineVersion.parse("2.4.0")
        with pytest.raises(AttributeError):
            version.major = 3  # type: ignore[misc]


class TestVersionRange:
    """Tests for VersionRange parsing and matching."""

    @pytest.mark.parametrize(
        "range_text, version, expected",
        [
            (">=2.4.0", "2.4.0", True),
            (">=2.4.0", "2.3.9", False),
            (">2.4.0", "2.4.0", False),
            ("<3.0.0", "2.99.0", True),
            ("<=2.4.0", "2.4.0", True),
            ("2.4.0", "2.4.0", True),
            ("=2.4.0", "2.4.1", False),
            (">=2.4.0 <3.0.0", "2.6.1", True),
            (">=2.4.0 <3.0.0", "3.0.0", False),
            (">= 2.4.0", "2.5.0", True),
            ("^2.4.1", "2.9.0", True),
            ("^2.4.1", "3.0.0", False),
            ("^0.3.1", "0.3.9", True),
            ("^0.3.1", "0.4.0", False),
            ("~2.4.1", "2.4.9", True),
            ("~2.4.1", "2.5.0", False),
            ("2.4", "2.4.7", True),
            ("2.4", "2.5.0", False),
            ("2", "2.99.99", True),
            ("<2.0.0 || >=2.4.0", "2.5.0", True),
            ("<2.0.0 || >=2.4.0", "2.2.0", False),
            (">=2", "2.0.0", True),
        ],
    )
    def test_contains(self, range_text: str, version: str, expected: bool) -> None:
        """Test range membership."""
        assert VersionRange.parse(range_text).contains(EngineVersion.parse(version)) is expected

    def test_in_operator(self) -> None:
        """Test the in operator on ranges."""
        assert EngineVersion.parse("2.5.0") in VersionRange.parse(">=2.4.0")

    def test_str_is_source(self) -> None:
        """Test that str() returns the range source."""
        assert str(VersionRange.parse(" >=2.4.0 <3 ")) == ">=2.4.0 <3"

    @pytest.mark.parametrize("text", ["", "   ", ">=banana", "2.4.0 ||", "=>2.4.0"])
    def test_invalid_range(self, text: str) -> None:
        """Test that malformed ranges are rejected."""
        with pytest.raises(InvalidConfiguration):
            VersionRange.parse(text)


class TestQueryInfoByLanguage:
    """Tests for QueryInfoByLanguage."""

    def test_languages(self) -> None:
        """Test the languages property."""
        info = QueryInfoByLanguage(by_language={"javascript": {"/q.ql": {}}})
        assert info.languages == {"javascript"}

    def test_empty_defaults(self) -> None:
        """Test the empty default result."""
        info = QueryInfoByLanguage()
        assert info.languages == set()
        assert info.no_declared_language == {}
        assert info.multiple_declared_languages == {}
