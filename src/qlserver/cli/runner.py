"""CLI runner orchestration.

This module handles command dispatch and execution for the qlserver CLI.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from argparse import Namespace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from qlserver.cli.arguments import build_parser
from qlserver.cli.exit_codes import (
    EXIT_ENGINE_ERROR,
    EXIT_INCOMPATIBLE_VERSION,
    EXIT_INVALID_USAGE,
    EXIT_SUCCESS,
)
from qlserver.config import CliServerConfig, load_config
from qlserver.core.logging import configure_logging, get_logger
from qlserver.engine.ram import resolve_ram
from qlserver.errors import CliServerError, IncompatibleEngineVersion, InvalidConfiguration
from qlserver.server import CliServer

LOGGER = get_logger(__name__)


def get_version() -> str:
    """Get qlserver version.

    Returns:
        Version string from package metadata or fallback.
    """
    try:
        return version("qlserver")
    except PackageNotFoundError:
        # Fallback for editable installs that have not yet built metadata.
        from qlserver import __version__
        return __version__


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _to_jsonable(v) for k, v in dataclasses.asdict(value).items()}
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return value


def print_json(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), indent=2, sort_keys=True))


class CLIRunner:
    """Orchestrates CLI execution with subcommand dispatch."""

    def __init__(self) -> None:
        self.parser = build_parser()
        self._version = get_version()
        self._handlers: Dict[str, Callable[[Namespace, CliServer], int]] = {
            "version": self._handle_version,
            "qlpacks": self._handle_qlpacks,
            "languages": self._handle_languages,
            "query-languages": self._handle_query_languages,
            "library-path": self._handle_library_path,
            "database": self._handle_database,
            "status": self._handle_status,
        }

    def run(self, argv: Optional[Iterable[str]] = None) -> int:
        """Run the CLI.

        Args:
            argv: Command-line arguments (defaults to sys.argv).

        Returns:
            Exit code.
        """
        argv_list = list(argv) if argv is not None else None
        args = self.parser.parse_args(argv_list)

        # Configure logging as early as possible
        configure_logging(debug=args.debug, verbose=args.verbose, quiet=args.quiet)

        if args.version:
            print(self._version)
            return EXIT_SUCCESS

        command = getattr(args, "command", None)
        if command is None:
            self.parser.print_help()
            return EXIT_SUCCESS

        if command == "ram":
            return self._handle_ram(args)

        try:
            config = self._load_config(args)
        except InvalidConfiguration as e:
            print(f"qlserver: {e}", file=sys.stderr)
            return EXIT_INVALID_USAGE

        try:
            with CliServer(config) as cli:
                if config.required_version and command not in ("version", "status"):
                    cli.require_version()
                return self._handlers[command](args, cli)
        except IncompatibleEngineVersion as e:
            print(f"qlserver: {e}", file=sys.stderr)
            return EXIT_INCOMPATIBLE_VERSION
        except InvalidConfiguration as e:
            print(f"qlserver: {e}", file=sys.stderr)
            return EXIT_INVALID_USAGE
        except CliServerError as e:
            LOGGER.debug("Engine command failed", exc_info=True)
            print(f"qlserver: {e}", file=sys.stderr)
            return EXIT_ENGINE_ERROR

    def _load_config(self, args: Namespace) -> CliServerConfig:
        overrides: Dict[str, Any] = {}
        engine: Dict[str, Any] = {}
        if args.engine:
            engine["path"] = args.engine
        if args.ram is not None:
            engine["ram"] = args.ram
        if args.timeout is not None:
            engine["timeout"] = args.timeout
        if engine:
            overrides["engine"] = engine

        return load_config(
            project_root=Path.cwd(),
            cli_config_path=args.config,
            cli_overrides=overrides,
        )

    @staticmethod
    def _folders(args: Namespace) -> List[Path]:
        folders = getattr(args, "folders", None) or [Path.cwd()]
        return [Path(folder).resolve() for folder in folders]

    def _handle_ram(self, args: Namespace) -> int:
        try:
            flags = resolve_ram(args.megabytes)
        except InvalidConfiguration as e:
            print(f"qlserver: {e}", file=sys.stderr)
            return EXIT_INVALID_USAGE
        print_json(flags)
        return EXIT_SUCCESS

    def _handle_version(self, args: Namespace, cli: CliServer) -> int:
        if args.require:
            engine_version = cli.require_version(args.require)
        else:
            engine_version = cli.get_version()
        print(engine_version)
        return EXIT_SUCCESS

    def _handle_qlpacks(self, args: Namespace, cli: CliServer) -> int:
        print_json(cli.resolve_qlpacks(self._folders(args)))
        return EXIT_SUCCESS

    def _handle_languages(self, args: Namespace, cli: CliServer) -> int:
        print_json(cli.resolve_languages())
        return EXIT_SUCCESS

    def _handle_query_languages(self, args: Namespace, cli: CliServer) -> int:
        info = cli.resolve_query_by_language(self._folders(args), args.query.resolve())
        print_json(info)
        return EXIT_SUCCESS

    def _handle_library_path(self, args: Namespace, cli: CliServer) -> int:
        print_json(cli.resolve_library_path(self._folders(args), args.query.resolve()))
        return EXIT_SUCCESS

    def _handle_database(self, args: Namespace, cli: CliServer) -> int:
        print_json(cli.resolve_database(args.database.resolve()))
        return EXIT_SUCCESS

    def _handle_status(self, args: Namespace, cli: CliServer) -> int:
        engine_version = cli.get_version()
        print_json({
            "engine_version": str(engine_version),
            "channel": cli.channel.describe(),
            "config_sources": cli.config.sources,
        })
        return EXIT_SUCCESS
