"""Command-line front end for qlserver."""

from __future__ import annotations

import sys
from typing import Iterable, Optional

from qlserver.cli.runner import CLIRunner


def main(argv: Optional[Iterable[str]] = None) -> int:
    """Entry point for the ``qlserver`` console script."""
    return CLIRunner().run(argv)


if __name__ == "__main__":
    sys.exit(main())
