"""Cascade service configuration from YAML file.

Loads from a single YAML file with all settings in one place:
- Kafka connection settings
- Consumer and producer overrides forwarded to aiokafka
- Source topic, consumer group and retry-level layout
- Service timeout, publish retry budget and observability settings

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Default config file: cascade.yaml in the working directory
DEFAULT_CONFIG_FILE = Path("cascade.yaml")


@dataclass
class CascadeConfig:
    """Cascade service configuration.

    Configuration structure:
        cascade:
          connection: {...}       # Shared connection settings
          consumer: {...}         # AIOKafkaConsumer overrides
          producer: {...}         # AIOKafkaProducer overrides
          topic: orders
          group_id: orders-cascade
          retry_levels: 3
          retry_options: {timeout_limit: [...], batch_limit: [...]}
          provisioning: {num_partitions: 1, replication_factor: 1}
          publish_retry: {max_attempts: 3, base_delay: 0.5, max_delay: 5.0}

    All Kafka timing values in milliseconds; service timeouts in seconds.
    """

    # =========================================================================
    # CONNECTION SETTINGS (shared by consumer, producer and admin)
    # =========================================================================
    bootstrap_servers: str = ""
    client_id: str = "kafka-cascade"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 40000
    metadata_max_age_ms: int = 300000  # 5 minutes

    consumer: Dict[str, Any] = field(default_factory=dict)
    producer: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # CASCADE LAYOUT
    # =========================================================================
    topic: str = ""
    group_id: str = ""
    retry_levels: int = 0
    retry_options: Dict[str, List[int]] = field(default_factory=dict)
    dead_letter_topic: Optional[str] = None

    # =========================================================================
    # PROVISIONING
    # =========================================================================
    num_partitions: int = 1
    replication_factor: int = 1

    # =========================================================================
    # PROCESSING
    # =========================================================================
    service_timeout_seconds: Optional[float] = 300.0
    drain_timeout_seconds: float = 30.0
    publish_retry: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    metrics_port: Optional[int] = None

    def get_dead_letter_topic(self) -> str:
        """Dead-letter topic name, defaulting to '{topic}.dlq'."""
        return self.dead_letter_topic or f"{self.topic}.dlq"

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in cascade.connection section")
        if not self.topic:
            raise ValueError("cascade.topic is required")
        if not self.group_id:
            raise ValueError("cascade.group_id is required")
        if self.retry_levels < 0:
            raise ValueError(f"cascade.retry_levels must be >= 0, got {self.retry_levels}")

        for key in ("timeout_limit", "batch_limit"):
            values = self.retry_options.get(key) or []
            if len(values) > self.retry_levels:
                raise ValueError(
                    f"cascade.retry_options.{key} has {len(values)} entries "
                    f"but only {self.retry_levels} retry levels are configured"
                )

        if self.service_timeout_seconds is not None and self.service_timeout_seconds <= 0:
            raise ValueError(
                f"cascade.service_timeout_seconds must be > 0 or null, got {self.service_timeout_seconds}"
            )
        if self.drain_timeout_seconds <= 0:
            raise ValueError(
                f"cascade.drain_timeout_seconds must be > 0, got {self.drain_timeout_seconds}"
            )
        if self.num_partitions < 1 or self.replication_factor < 1:
            raise ValueError("cascade.provisioning values must be >= 1")


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> CascadeConfig:
    """Load cascade configuration from a YAML file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"See src/config/cascade.yaml.example for the expected structure"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if "cascade" not in yaml_data:
        raise ValueError(
            "Invalid config file: missing 'cascade:' section\n"
            "See cascade.yaml.example for correct structure"
        )

    cascade_config = yaml_data["cascade"]

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        cascade_config = _deep_merge(cascade_config, overrides)

    connection = cascade_config.get("connection", {})
    provisioning = cascade_config.get("provisioning", {})

    config = CascadeConfig(
        bootstrap_servers=connection.get("bootstrap_servers", ""),
        client_id=connection.get("client_id", "kafka-cascade"),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=int(connection.get("request_timeout_ms", 40000)),
        metadata_max_age_ms=int(connection.get("metadata_max_age_ms", 300000)),
        consumer=cascade_config.get("consumer", {}) or {},
        producer=cascade_config.get("producer", {}) or {},
        topic=cascade_config.get("topic", ""),
        group_id=cascade_config.get("group_id", ""),
        retry_levels=int(cascade_config.get("retry_levels", 0)),
        retry_options=cascade_config.get("retry_options", {}) or {},
        dead_letter_topic=cascade_config.get("dead_letter_topic"),
        num_partitions=int(provisioning.get("num_partitions", 1)),
        replication_factor=int(provisioning.get("replication_factor", 1)),
        service_timeout_seconds=cascade_config.get("service_timeout_seconds", 300.0),
        drain_timeout_seconds=float(cascade_config.get("drain_timeout_seconds", 30.0)),
        publish_retry=cascade_config.get("publish_retry", {}) or {},
        metrics_port=cascade_config.get("metrics_port"),
    )

    config.validate()
    return config


__all__ = [
    "CascadeConfig",
    "load_config",
    "load_yaml",
    "DEFAULT_CONFIG_FILE",
]
