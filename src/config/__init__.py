"""Configuration loading for the cascade service.

Configuration is loaded from a single YAML file (default ``cascade.yaml`` in
the working directory) with a top-level ``cascade:`` section. See
``cascade.yaml.example`` next to this module for the full structure.

Usage:
    >>> from config import load_config
    >>> config = load_config(Path("cascade.yaml"))
    >>> config.topic, config.retry_levels

Settings are merged in the following priority (highest to lowest):

1. ``overrides`` passed to ``load_config`` (deep-merged)
2. YAML configuration file, with ``${VAR}`` / ``${VAR:-default}`` expansion
3. Dataclass defaults
"""

from config.config import (
    CascadeConfig,
    load_config,
)

__all__ = [
    "load_config",
    "CascadeConfig",
]
