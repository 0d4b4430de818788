"""Typed metadata queries on top of the engine channel.

Each query maps to one engine subcommand. Responses are checked against
the shape the engine documents and decoded into qlserver types; anything
else raises MalformedOutput naming the command and carrying the raw JSON.
Nothing is cached and nothing is retried.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from qlserver.core.logging import get_logger
from qlserver.core.models import DatabaseInfo, LanguageMap, QlpackMap, QueryInfoByLanguage, QuerySetup
from qlserver.engine.channel import ProcessChannel
from qlserver.errors import MalformedOutput

LOGGER = get_logger(__name__)

PathLike = Union[str, Path]

RESOLVE_QLPACKS = ["resolve", "qlpacks"]
RESOLVE_LANGUAGES = ["resolve", "languages"]
RESOLVE_QUERIES = ["resolve", "queries"]
RESOLVE_LIBRARY_PATH = ["resolve", "library-path"]
RESOLVE_DATABASE = ["resolve", "database"]


def _raw(output: Any) -> str:
    try:
        return json.dumps(output, indent=2, sort_keys=True)
    except (TypeError, ValueError):
        return repr(output)


def _expect_object(output: Any, what: str, command: List[str]) -> Dict[str, Any]:
    if not isinstance(output, dict):
        raise MalformedOutput(
            f"Expected {what} to be a JSON object, got {type(output).__name__}",
            command,
            raw_output=_raw(output),
        )
    return output


def _path_list(value: Any, what: str, command: List[str], output: Any) -> List[Path]:
    # A single path is accepted in place of a one-element list.
    if isinstance(value, str):
        return [Path(value)]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return [Path(item) for item in value]
    raise MalformedOutput(
        f"Expected {what} to be a path or list of paths, got {type(value).__name__}",
        command,
        raw_output=_raw(output),
    )


def decode_path_map(output: Any, what: str, command: List[str]) -> Dict[str, List[Path]]:
    """Decode ``{name: [path, ...]}`` as produced by the resolve commands."""
    mapping = _expect_object(output, what, command)
    return {
        name: _path_list(value, f"{what} entry '{name}'", command, output)
        for name, value in mapping.items()
    }


def decode_query_info(output: Any, command: List[str]) -> QueryInfoByLanguage:
    """Decode ``resolve queries --format=bylanguage`` output."""
    data = _expect_object(output, "query info", command)
    if "byLanguage" not in data:
        raise MalformedOutput(
            "Query info output has no 'byLanguage'",
            command,
            raw_output=_raw(output),
        )
    by_language = _expect_object(data["byLanguage"], "'byLanguage'", command)

    for language, queries in by_language.items():
        _expect_object(queries, f"queries for language '{language}'", command)

    return QueryInfoByLanguage(
        by_language={language: dict(queries) for language, queries in by_language.items()},
        no_declared_language=dict(
            _expect_object(data.get("noDeclaredLanguage", {}), "'noDeclaredLanguage'", command)
        ),
        multiple_declared_languages=dict(
            _expect_object(
                data.get("multipleDeclaredLanguages", {}), "'multipleDeclaredLanguages'", command
            )
        ),
    )


def _optional_str(data: Dict[str, Any], key: str, command: List[str]) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedOutput(f"Expected '{key}' to be a string", command, raw_output=_raw(data))
    return value


def decode_query_setup(output: Any, command: List[str]) -> QuerySetup:
    """Decode ``resolve library-path`` output."""
    data = _expect_object(output, "library path", command)
    if "libraryPath" not in data or "dbscheme" not in data:
        raise MalformedOutput(
            "Library path output needs 'libraryPath' and 'dbscheme'",
            command,
            raw_output=_raw(output),
        )
    dbscheme = _optional_str(data, "dbscheme", command)
    cache = _optional_str(data, "compilationCache", command)
    return QuerySetup(
        library_path=_path_list(data["libraryPath"], "'libraryPath'", command, output),
        dbscheme=Path(dbscheme or ""),
        relative_name=_optional_str(data, "relativeName", command),
        compilation_cache=Path(cache) if cache else None,
    )


def decode_database_info(output: Any, command: List[str]) -> DatabaseInfo:
    """Decode ``resolve database`` output."""
    data = _expect_object(output, "database info", command)
    prefix = _optional_str(data, "sourceLocationPrefix", command)
    if prefix is None:
        raise MalformedOutput(
            "Database info has no 'sourceLocationPrefix'",
            command,
            raw_output=_raw(output),
        )

    languages = data.get("languages", [])
    if not isinstance(languages, list) or not all(isinstance(item, str) for item in languages):
        raise MalformedOutput("Expected 'languages' to be a list of strings", command, raw_output=_raw(output))

    unicode_newlines = data.get("unicodeNewlines", False)
    if not isinstance(unicode_newlines, bool):
        raise MalformedOutput("Expected 'unicodeNewlines' to be a boolean", command, raw_output=_raw(output))

    def optional_path(key: str) -> Optional[Path]:
        value = _optional_str(data, key, command)
        return Path(value) if value else None

    return DatabaseInfo(
        source_location_prefix=prefix,
        languages=list(languages),
        column_kind=_optional_str(data, "columnKind", command),
        unicode_newlines=unicode_newlines,
        source_archive_zip=optional_path("sourceArchiveZip"),
        source_archive_root=optional_path("sourceArchiveRoot"),
        dataset_folder=optional_path("datasetFolder"),
        logs_folder=optional_path("logsFolder"),
    )


def additional_packs_args(folders: Sequence[PathLike]) -> List[str]:
    """Build the ``--additional-packs`` argument for a set of workspace folders."""
    if isinstance(folders, (str, Path)):
        folders = [folders]
    if not folders:
        return []
    return ["--additional-packs", os.pathsep.join(str(folder) for folder in folders)]


class MetadataResolver:
    """Resolves packs, languages and query metadata through the engine."""

    def __init__(self, channel: ProcessChannel) -> None:
        self._channel = channel

    def _invoke(self, command: List[str], args: List[str], timeout: Optional[float]) -> Any:
        return self._channel.invoke(command, args, timeout=timeout)

    def resolve_qlpacks(
        self,
        folders: Sequence[PathLike],
        timeout: Optional[float] = None,
    ) -> QlpackMap:
        """Resolve the packs visible from the given workspace folders.

        Args:
            folders: Workspace folders searched in addition to the engine's
                own search path.
            timeout: Optional deadline in seconds.

        Returns:
            Pack name -> resolved location(s).
        """
        args = ["--format=json", *additional_packs_args(folders)]
        output = self._invoke(RESOLVE_QLPACKS, args, timeout)
        qlpacks = decode_path_map(output, "qlpacks", RESOLVE_QLPACKS + args)
        LOGGER.debug(f"Resolved {len(qlpacks)} qlpack(s)")
        return qlpacks

    def resolve_languages(self, timeout: Optional[float] = None) -> LanguageMap:
        """Resolve the languages the engine has extractors for."""
        args = ["--format=json"]
        output = self._invoke(RESOLVE_LANGUAGES, args, timeout)
        return decode_path_map(output, "languages", RESOLVE_LANGUAGES + args)

    def resolve_query_by_language(
        self,
        folders: Sequence[PathLike],
        query_file: PathLike,
        timeout: Optional[float] = None,
    ) -> QueryInfoByLanguage:
        """Ask the engine which language(s) a query file targets.

        The language keys are whatever the engine reports; a query written
        against one language's libraries normally yields exactly one.
        """
        args = ["--format=bylanguage", *additional_packs_args(folders), str(query_file)]
        output = self._invoke(RESOLVE_QUERIES, args, timeout)
        info = decode_query_info(output, RESOLVE_QUERIES + args)
        LOGGER.debug(f"Query {query_file} targets {sorted(info.languages)}")
        return info

    def resolve_library_path(
        self,
        folders: Sequence[PathLike],
        query_file: PathLike,
        timeout: Optional[float] = None,
    ) -> QuerySetup:
        """Resolve the library path and dbscheme used to compile a query."""
        args = ["--format=json", *additional_packs_args(folders), "--query", str(query_file)]
        output = self._invoke(RESOLVE_LIBRARY_PATH, args, timeout)
        return decode_query_setup(output, RESOLVE_LIBRARY_PATH + args)

    def resolve_database(
        self,
        database_path: PathLike,
        timeout: Optional[float] = None,
    ) -> DatabaseInfo:
        """Read the metadata of a database directory."""
        args = ["--format=json", str(database_path)]
        output = self._invoke(RESOLVE_DATABASE, args, timeout)
        return decode_database_info(output, RESOLVE_DATABASE + args)
