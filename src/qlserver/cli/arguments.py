"""Argument parser construction for the qlserver CLI.

Subcommands:
- qlserver version          - Print (and optionally check) the engine version
- qlserver ram              - Print heap flags for a memory budget
- qlserver qlpacks          - Resolve packs visible from workspace folders
- qlserver languages        - List languages the engine supports
- qlserver query-languages  - Show which language(s) a query targets
- qlserver library-path     - Resolve the library path for a query
- qlserver database         - Show database metadata
- qlserver status           - Show engine process state and config sources
"""

from __future__ import annotations

import argparse
from pathlib import Path


def _add_global_options(parser: argparse.ArgumentParser) -> None:
    """Add global options available to all commands."""
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show qlserver version and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (includes engine stderr).",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (info-level) logging.",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging output to errors only.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        metavar="PATH",
        help="Path to a qlserver config file (default: .qlserver.yml in the current directory).",
    )
    parser.add_argument(
        "--engine",
        metavar="PATH",
        help="Engine executable (default: engine.path, $CODEQL_PATH, or codeql on PATH).",
    )
    parser.add_argument(
        "--ram",
        type=int,
        metavar="MB",
        help="Memory budget for the engine; adds heap flags to every command.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Deadline for each engine command.",
    )


def _add_folders_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "folders",
        nargs="*",
        type=Path,
        metavar="FOLDER",
        help="Workspace folders to search for packs (default: current directory).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser for the qlserver CLI."""
    parser = argparse.ArgumentParser(
        prog="qlserver",
        description="qlserver - drive the CodeQL engine through a long-lived CLI server.",
        epilog=(
            "Examples:\n"
            "  qlserver version --require '>=2.4.0'\n"
            "  qlserver ram 8192\n"
            "  qlserver qlpacks ~/ql\n"
            "  qlserver query-languages queries/simple.ql ~/ql\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    _add_global_options(parser)

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands:",
        metavar="COMMAND",
    )

    version_parser = subparsers.add_parser("version", help="Print the engine version.")
    version_parser.add_argument(
        "--require",
        metavar="RANGE",
        help="Fail unless the engine version satisfies RANGE (e.g. '>=2.4.0 <3').",
    )

    ram_parser = subparsers.add_parser("ram", help="Print heap flags for a memory budget.")
    ram_parser.add_argument("megabytes", type=int, help="Total memory budget in MB.")

    qlpacks_parser = subparsers.add_parser("qlpacks", help="Resolve available qlpacks.")
    _add_folders_argument(qlpacks_parser)

    subparsers.add_parser("languages", help="List supported languages.")

    query_parser = subparsers.add_parser(
        "query-languages",
        help="Show which language(s) a query file targets.",
    )
    query_parser.add_argument("query", type=Path, help="Query file (.ql).")
    _add_folders_argument(query_parser)

    library_parser = subparsers.add_parser(
        "library-path",
        help="Resolve the library path and dbscheme for a query file.",
    )
    library_parser.add_argument("query", type=Path, help="Query file (.ql).")
    _add_folders_argument(library_parser)

    database_parser = subparsers.add_parser("database", help="Show database metadata.")
    database_parser.add_argument("database", type=Path, help="Database directory.")

    subparsers.add_parser(
        "status",
        help="Start the engine and show its version, process state and config sources.",
    )

    return parser
