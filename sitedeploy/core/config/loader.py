"""
Configuration loader — reads sitedeploy.yml into a ServiceConfig.

Reads YAML, applies ``SITEDEPLOY_*`` environment overrides, validates
against the Pydantic model and anchors relative paths at the config
file's directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sitedeploy.core.config.settings import ServiceConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "sitedeploy.yml"

# env var → dotted config key
_ENV_OVERRIDES = {
    "SITEDEPLOY_SECRET_KEY": "secret_key",
    "SITEDEPLOY_STAGING_ROOT": "staging_root",
    "SITEDEPLOY_PUBLISH_ROOT": "publish_root",
    "SITEDEPLOY_REGISTRY_BACKEND": "registry.backend",
    "SITEDEPLOY_REGISTRY_PATH": "registry.path",
    "SITEDEPLOY_SITE_URL_TEMPLATE": "site_url_template",
}


class ConfigError(Exception):
    """Raised when service configuration is invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for sitedeploy.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to sitedeploy.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def _apply_env(data: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    for var, dotted in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        target = data
        *parents, leaf = dotted.split(".")
        for part in parents:
            node = target.get(part)
            if not isinstance(node, dict):
                node = {}
                target[part] = node
            target = node
        target[leaf] = value
        logger.debug("Config override from %s", var)
    return data


def load_config(
    path: Path | None = None,
    *,
    search: bool = True,
    environ: dict[str, str] | None = None,
) -> ServiceConfig:
    """Load and validate service configuration.

    Args:
        path: Explicit path to sitedeploy.yml.  If None and ``search``
            is set, searches upward from the working directory; if no
            file is found, defaults are used.
        search: Whether to search for a config file when ``path`` is None.
        environ: Environment mapping (default: ``os.environ``).

    Returns:
        Validated ServiceConfig with absolute paths.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    environ = dict(os.environ if environ is None else environ)

    if path is None and search:
        path = find_config_file()

    data: dict[str, Any] = {}
    base_dir = Path.cwd()

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")

        logger.debug("Loading service config from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")

        data = loaded
        base_dir = path.parent.resolve()

    data = _apply_env(data, environ)

    try:
        config = ServiceConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid service configuration: {e}") from e

    config = config.resolve_paths(base_dir)
    logger.info(
        "Loaded config (registry=%s, staging=%s, publish=%s)",
        config.registry.backend, config.staging_root, config.publish_root,
    )
    return config
