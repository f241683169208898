"""
Configuration loader — resolves the host root into an AppctlConfig.

Resolution order (later wins):
    built-in layout  <  appctl.yml in the root  <  APPCTL_* env vars
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from appctl.core.errors import ConfigurationError
from appctl.core.models.config import AppctlConfig

logger = logging.getLogger(__name__)

# Optional override file inside the host root
CONFIG_FILE = "appctl.yml"

# Env var → config field
_ENV_OVERRIDES = {
    "APPCTL_REPO_DIR": "repo_dir",
    "APPCTL_DATA_DIR": "data_dir",
}


def resolve_root(root: Path | str | None = None) -> Path:
    """Pick the host root: explicit argument, then APPCTL_ROOT, then cwd."""
    if root is None:
        root = os.environ.get("APPCTL_ROOT") or Path.cwd()
    return Path(root).resolve()


def load_config(root: Path | str | None = None) -> AppctlConfig:
    """Load host configuration.

    Args:
        root: Host root directory. Defaults to ``$APPCTL_ROOT`` or cwd.

    Returns:
        Validated AppctlConfig with every path resolved.

    Raises:
        ConfigurationError: If appctl.yml exists but is invalid.
    """
    root_path = resolve_root(root)
    data: dict = {}

    config_file = root_path / CONFIG_FILE
    if config_file.is_file():
        logger.debug("Loading config overrides from %s", config_file)
        try:
            raw = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Invalid config file {config_file}: {e}") from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"Expected a YAML mapping in {config_file}, got {type(raw).__name__}"
            )
        data.update(raw)

    for env_var, field in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[field] = value

    data["root"] = root_path
    try:
        config = AppctlConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.debug("Host root: %s (repo=%s)", config.root, config.repo_dir)
    return config
