"""Engine executable discovery.

Resolution order:
1. An explicitly configured path
2. The CODEQL_PATH environment variable
3. ``codeql`` on PATH
"""

from __future__ import annotations

import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from qlserver.core.logging import get_logger
from qlserver.errors import EngineUnavailable

LOGGER = get_logger(__name__)

# Environment variable pointing at the engine executable
ENGINE_PATH_ENV = "CODEQL_PATH"

# Executable name looked up on PATH
DEFAULT_ENGINE_NAME = "codeql"


class ExecutableStatus(str, Enum):
    """Status of an engine executable."""

    PRESENT = "present"
    MISSING = "missing"
    NOT_EXECUTABLE = "not_executable"


def validate_executable(path: Path) -> ExecutableStatus:
    """Check that a path exists and is executable."""
    if not path.is_file():
        return ExecutableStatus.MISSING

    if not os.access(path, os.X_OK):
        return ExecutableStatus.NOT_EXECUTABLE

    return ExecutableStatus.PRESENT


def find_engine_executable(configured: Optional[Union[str, Path]] = None) -> Path:
    """Locate the engine executable.

    Args:
        configured: Explicit path from configuration, if any.

    Returns:
        Path to an executable engine binary.

    Raises:
        EngineUnavailable: If no usable executable can be found.
    """
    if configured:
        candidate = Path(configured).expanduser()
        source = "configuration"
    elif os.environ.get(ENGINE_PATH_ENV):
        candidate = Path(os.environ[ENGINE_PATH_ENV]).expanduser()
        source = ENGINE_PATH_ENV
    else:
        found = shutil.which(DEFAULT_ENGINE_NAME)
        if found is None:
            raise EngineUnavailable(
                f"Could not find '{DEFAULT_ENGINE_NAME}' on PATH; "
                f"set engine.path or {ENGINE_PATH_ENV}"
            )
        candidate = Path(found)
        source = "PATH"

    status = validate_executable(candidate)
    if status != ExecutableStatus.PRESENT:
        raise EngineUnavailable(f"Engine executable from {source} is {status.value}: {candidate}")

    LOGGER.debug(f"Using engine executable {candidate} (from {source})")
    return candidate
