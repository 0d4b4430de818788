"""Logging setup for qlserver.

Package modules log through ``get_logger(__name__)``. Lines the engine
writes to stderr go to their own logger, ``qlserver.engine.stderr``, so
they can be filtered apart from qlserver's own messages.
"""

from __future__ import annotations

import logging
from typing import Optional

# Root of the package's logger hierarchy
PACKAGE_LOGGER = "qlserver"

# Logger receiving one record per engine stderr line
ENGINE_STDERR_LOGGER = f"{PACKAGE_LOGGER}.engine.stderr"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging level based on CLI flags.

    Precedence:
    - quiet → ERROR
    - debug → DEBUG
    - verbose → INFO
    - default → WARNING

    Engine stderr is logged at DEBUG, so it only shows with ``--debug``.
    """
    if quiet:
        level = logging.ERROR
    elif debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(level=level, format=LOG_FORMAT)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger, defaulting to the package root logger."""
    return logging.getLogger(name if name is not None else PACKAGE_LOGGER)


def get_engine_stderr_logger(pid: Optional[int] = None) -> logging.Logger:
    """Return the logger for engine stderr, one child per engine process."""
    if pid is None:
        return logging.getLogger(ENGINE_STDERR_LOGGER)
    return logging.getLogger(f"{ENGINE_STDERR_LOGGER}.{pid}")
