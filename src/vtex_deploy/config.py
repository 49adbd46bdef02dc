"""YAML configuration loading.

Example:
    >>> from vtex_deploy.config import load_config
    >>> config = load_config("vtex-deploy.yaml")  # doctest: +SKIP
    >>> config.environment(Environment.QA).account  # doctest: +SKIP
    'mystore'
"""

from __future__ import annotations

from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from vtex_deploy.errors import ConfigurationError
from vtex_deploy.schemas.config import DeployerConfig

DEFAULT_CONFIG_PATH = Path("vtex-deploy.yaml")

logger = structlog.get_logger(__name__)


def load_config(path: Path | str | None = None) -> DeployerConfig:
    """Load a ``DeployerConfig`` from a YAML file.

    A missing file yields the default configuration (no environments).
    An empty file is treated the same way.

    Args:
        path: Config file path (``vtex-deploy.yaml`` if None).

    Raises:
        ConfigurationError: If the file is unreadable, not valid YAML, not a
            mapping, or fails schema validation.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.debug("config_file_missing", path=str(config_path))
        return DeployerConfig()

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    if data is None:
        return DeployerConfig()
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )

    try:
        config = DeployerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.info(
        "config_loaded",
        path=str(config_path),
        environments=sorted(env.value for env in config.environments),
        webhooks=len(config.notifications.webhooks),
    )
    return config


__all__: list[str] = ["DEFAULT_CONFIG_PATH", "load_config"]
