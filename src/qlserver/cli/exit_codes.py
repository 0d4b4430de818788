"""Process exit codes for the qlserver command line."""

EXIT_SUCCESS = 0
EXIT_ENGINE_ERROR = 1
EXIT_INCOMPATIBLE_VERSION = 2
EXIT_INVALID_USAGE = 3
