"""YAML configuration for armtoolchain.

Configuration is read from ``<data-dir>/config.yaml`` and then overridden by
environment variables. Every key is optional:

    index_url: https://api.github.com/repos/arm/arm-toolchain/releases
    tag_prefix: release-
    tag_suffix: -ATfE
    releases_per_page: 10
    connect_timeout: 10
    read_timeout: 60
    lock_timeout: -1        # seconds to wait for a lock, -1 waits forever
    cross_env: true
    env:
      CMAKE_GENERATOR: Ninja
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

import yaml

from armtoolchain.core.directory import CONFIG_FILENAME, get_default_data_dir
from armtoolchain.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = "https://api.github.com/repos/arm/arm-toolchain/releases"

# Environment variable -> config field
ENV_OVERRIDES = {
    "ARM_TOOLCHAIN_INDEX_URL": "index_url",
    "ARM_TOOLCHAIN_TIMEOUT": "read_timeout",
    "ARM_TOOLCHAIN_LOCK_TIMEOUT": "lock_timeout",
    "GITHUB_TOKEN": "github_token",
}


@dataclass
class ManagerConfig:
    """Settings shared by every component bound to one data directory."""

    data_dir: Path = field(default_factory=get_default_data_dir)
    index_url: str = DEFAULT_INDEX_URL
    tag_prefix: str = "release-"
    tag_suffix: str = "-ATfE"  # arm toolchain for embedded
    releases_per_page: int = 10
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    lock_timeout: float = -1
    cross_env: bool = True
    env: Dict[str, str] = field(default_factory=dict)
    github_token: Optional[str] = None

    @property
    def timeout(self) -> tuple:
        """(connect, read) timeout tuple as accepted by requests."""
        return (self.connect_timeout, self.read_timeout)


def resolve_data_dir(data_dir: Optional[Path] = None) -> Path:
    """Pick the data directory: explicit argument, ARM_TOOLCHAIN_HOME, default."""
    if data_dir is not None:
        return Path(data_dir)
    env_home = os.environ.get("ARM_TOOLCHAIN_HOME")
    if env_home:
        return Path(env_home)
    return get_default_data_dir()


def load_config(data_dir: Optional[Path] = None) -> ManagerConfig:
    """
    Load configuration for a data directory.

    Args:
        data_dir: Data directory root. Falls back to ARM_TOOLCHAIN_HOME and
            then the platform default.

    Returns:
        Validated ManagerConfig

    Raises:
        ConfigError: If the YAML is malformed or a value has the wrong type
    """
    root = resolve_data_dir(data_dir)
    data = _load_yaml(root / CONFIG_FILENAME)

    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            logger.debug(f"Config override from {env_name}")
            data[key] = value

    return _parse_and_validate(root, data)


def _load_yaml(config_file: Path) -> dict:
    if not config_file.exists():
        logger.debug(f"Config file not found (optional): {config_file}")
        return {}

    logger.debug(f"Loading configuration from {config_file}")
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read {config_file}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a mapping at top level")
    return data


def _parse_and_validate(root: Path, data: dict) -> ManagerConfig:
    known = {f.name for f in fields(ManagerConfig)} - {"data_dir"}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    config = ManagerConfig(data_dir=root)

    for key in ("index_url", "tag_prefix", "tag_suffix", "github_token"):
        if key in data and data[key] is not None:
            setattr(config, key, str(data[key]))

    for key in ("connect_timeout", "read_timeout", "lock_timeout"):
        if key in data:
            try:
                setattr(config, key, float(data[key]))
            except (TypeError, ValueError):
                raise ConfigError(f"'{key}' must be a number, got {data[key]!r}")

    if "releases_per_page" in data:
        try:
            config.releases_per_page = int(data["releases_per_page"])
        except (TypeError, ValueError):
            raise ConfigError(
                f"'releases_per_page' must be an integer, got {data['releases_per_page']!r}"
            )
        if not 1 <= config.releases_per_page <= 100:
            raise ConfigError("'releases_per_page' must be between 1 and 100")

    if "cross_env" in data:
        if not isinstance(data["cross_env"], bool):
            raise ConfigError("'cross_env' must be true or false")
        config.cross_env = data["cross_env"]

    if "env" in data:
        env = data["env"] or {}
        if not isinstance(env, dict):
            raise ConfigError("'env' must be a mapping of variable names to values")
        config.env = {str(k): str(v) for k, v in env.items()}

    if not config.index_url.startswith(("http://", "https://")):
        raise ConfigError(f"'index_url' must be an HTTP(S) URL: {config.index_url}")

    return config


__all__ = ["ManagerConfig", "load_config", "resolve_data_dir", "DEFAULT_INDEX_URL"]
