import sys

from qlserver.cli import main

sys.exit(main())
