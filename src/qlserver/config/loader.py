"""Configuration file loading and merging.

Handles loading configuration from YAML files with:
- Project-level config (.qlserver.yml)
- Global config ($QLSERVER_HOME/config/config.yml, default ~/.qlserver)
- Environment variable expansion (${VAR})
- Config merging with proper precedence
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from qlserver.config.models import CliServerConfig, EngineConfig
from qlserver.config.validation import ValidationSeverity, validate_config
from qlserver.core.logging import get_logger
from qlserver.errors import InvalidConfiguration

LOGGER = get_logger(__name__)

# Config file names
PROJECT_CONFIG_NAMES = [".qlserver.yml", ".qlserver.yaml", "qlserver.yml", "qlserver.yaml"]
GLOBAL_CONFIG_NAME = "config.yml"

# Default directory name under user home
DEFAULT_HOME_DIR_NAME = ".qlserver"

# Environment variable to override home directory
QLSERVER_HOME_ENV = "QLSERVER_HOME"

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def get_qlserver_home() -> Path:
    """Get the qlserver home directory path.

    Resolution order:
    1. QLSERVER_HOME environment variable (if set)
    2. ~/.qlserver (default)
    """
    env_home = os.environ.get(QLSERVER_HOME_ENV)
    if env_home:
        return Path(env_home)
    return Path.home() / DEFAULT_HOME_DIR_NAME


def load_config(
    project_root: Optional[Path] = None,
    cli_config_path: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> CliServerConfig:
    """Load configuration with proper precedence.

    Precedence (highest to lowest):
    1. CLI flags (cli_overrides)
    2. Custom config file (cli_config_path) OR project config (.qlserver.yml)
    3. Global config ($QLSERVER_HOME/config/config.yml)
    4. Built-in defaults

    Args:
        project_root: Directory searched for a project config file.
        cli_config_path: Optional path to custom config file (--config flag).
        cli_overrides: Dict of CLI flag overrides.

    Returns:
        Merged CliServerConfig instance.

    Raises:
        InvalidConfiguration: If a specified config file doesn't exist, has
            parse errors, or contains invalid values.
    """
    sources: List[str] = []
    merged: Dict[str, Any] = {}

    # Layer 1: Global config. A broken global file should not block work.
    global_path = find_global_config()
    if global_path is not None:
        try:
            global_dict = load_yaml_file(global_path)
            _raise_on_errors(global_dict, str(global_path))
            merged = merge_configs(merged, global_dict)
            sources.append(f"global:{global_path}")
            LOGGER.debug(f"Loaded global config from {global_path}")
        except (InvalidConfiguration, OSError) as e:
            LOGGER.warning(f"Failed to load global config: {e}")

    # Layer 2: Project or custom config
    if cli_config_path is not None:
        if not cli_config_path.exists():
            raise InvalidConfiguration(f"Config file not found: {cli_config_path}")
        project_dict = load_yaml_file(cli_config_path)
        _raise_on_errors(project_dict, str(cli_config_path))
        merged = merge_configs(merged, project_dict)
        sources.append(f"custom:{cli_config_path}")
        LOGGER.debug(f"Loaded custom config from {cli_config_path}")
    elif project_root is not None:
        project_path = find_project_config(project_root)
        if project_path is not None:
            project_dict = load_yaml_file(project_path)
            _raise_on_errors(project_dict, str(project_path))
            merged = merge_configs(merged, project_dict)
            sources.append(f"project:{project_path}")
            LOGGER.debug(f"Loaded project config from {project_path}")

    # Layer 3: CLI overrides
    if cli_overrides:
        _raise_on_errors(cli_overrides, "cli")
        merged = merge_configs(merged, cli_overrides)
        sources.append("cli")
        LOGGER.debug("Applied CLI overrides")

    config = dict_to_config(merged)
    config._config_sources = sources

    LOGGER.debug(f"Config loaded from sources: {sources}")
    return config


def _raise_on_errors(data: Dict[str, Any], source: str) -> None:
    errors = [
        issue for issue in validate_config(data, source=source)
        if issue.severity == ValidationSeverity.ERROR
    ]
    if errors:
        raise InvalidConfiguration("; ".join(str(issue) for issue in errors))


def find_project_config(project_root: Path) -> Optional[Path]:
    """Find config file in project root.

    Args:
        project_root: Directory to search in.

    Returns:
        Path to config file if found, None otherwise.
    """
    for name in PROJECT_CONFIG_NAMES:
        config_path = project_root / name
        if config_path.exists():
            return config_path
    return None


def find_global_config() -> Optional[Path]:
    """Find the global config file.

    Returns:
        Path to global config if it exists, None otherwise.
    """
    config_path = get_qlserver_home() / "config" / GLOBAL_CONFIG_NAME
    if config_path.exists():
        return config_path
    return None


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load and parse a YAML config file.

    Performs environment variable expansion on string values.

    Raises:
        InvalidConfiguration: If the file is not valid YAML or not a mapping.
    """
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise InvalidConfiguration(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise InvalidConfiguration(f"Config file must be a YAML mapping, got {type(data).__name__}")

    return expand_env_vars(data)


def expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config values.

    Supports ${VAR} and ${VAR:-default} syntax.
    """
    if isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        return ENV_VAR_PATTERN.sub(_env_var_replacer, data)
    else:
        return data


def _env_var_replacer(match: re.Match[str]) -> str:
    """Replace environment variable reference with its value."""
    var_name = match.group(1)
    default_value = match.group(2)

    value = os.environ.get(var_name)
    if value is not None:
        return value
    if default_value is not None:
        return default_value

    LOGGER.warning(f"Environment variable ${var_name} is not set and has no default")
    return ""


def merge_configs(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two config dicts, with overlay taking precedence.

    Rules:
    - Scalar values: overlay replaces base
    - Lists: overlay replaces base (no merging)
    - Dicts: recursive merge
    """
    result = base.copy()

    for key, overlay_value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(overlay_value, dict):
            result[key] = merge_configs(result[key], overlay_value)
        else:
            result[key] = overlay_value

    return result


def dict_to_config(data: Dict[str, Any]) -> CliServerConfig:
    """Convert a validated configuration dictionary to CliServerConfig."""
    engine_data = data.get("engine") or {}
    defaults = EngineConfig()

    engine = EngineConfig(
        path=engine_data.get("path") or None,
        server_args=list(engine_data.get("server_args") or defaults.server_args),
        extra_args=list(engine_data.get("extra_args") or []),
        log_dir=engine_data.get("log_dir") or None,
        ram=engine_data.get("ram"),
        timeout=engine_data.get("timeout"),
        shutdown_grace=(
            engine_data["shutdown_grace"]
            if engine_data.get("shutdown_grace") is not None
            else defaults.shutdown_grace
        ),
    )

    return CliServerConfig(
        engine=engine,
        required_version=data.get("required_version") or None,
    )
