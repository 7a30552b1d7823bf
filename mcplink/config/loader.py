"""Build a ClientConfig from defaults, a JSON file and in-memory overrides."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mcplink.config.schema import ClientConfig
from mcplink.core.errors import ConfigError
from mcplink.core.utils import deep_merge

logger = logging.getLogger(__name__)


def load_config(path: Path | str | None = None) -> ClientConfig:
    """Load a client configuration.

    Args:
        path: JSON file to read. None returns the built-in defaults.

    Returns:
        Validated ClientConfig.

    Raises:
        ConfigError: If the file cannot be read or does not validate.
    """
    if path is None:
        return ClientConfig()

    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8-sig").strip()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    if not content:
        logger.debug("Config file %s is empty, using defaults", path)
        return ClientConfig()

    try:
        config = ClientConfig.model_validate_json(content)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed for {path}: {e}") from e

    logger.debug("Loaded config from %s", path)
    return config


def merge_config(
    base: ClientConfig, overrides: Mapping[str, Any] | None
) -> ClientConfig:
    """Deep-merge ``overrides`` over ``base`` and re-validate.

    Dicts merge recursively; lists and scalars in ``overrides`` replace.

    Raises:
        ConfigError: If the merged result fails validation.
    """
    if not overrides:
        return base
    merged = deep_merge(base.to_dict(), overrides)
    try:
        return ClientConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed: {e}") from e
