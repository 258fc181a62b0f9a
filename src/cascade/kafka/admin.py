"""aiokafka-backed AdminClient used to provision retry-level topics."""

import logging
from collections.abc import Sequence

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import TopicAlreadyExistsError, for_code

from cascade.broker import TopicSpec
from cascade.kafka.security import build_kafka_security_config
from config.config import CascadeConfig
from core.errors.exceptions import BrokerConnectionError, ProvisioningError

logger = logging.getLogger(__name__)


class KafkaAdminClient:
    def __init__(self, config: CascadeConfig, client_id: str | None = None):
        self.config = config
        self.client_id = client_id or f"{config.client_id}-admin"
        self._admin: AIOKafkaAdminClient | None = None

    async def connect(self) -> None:
        if self._admin is not None:
            return

        admin = AIOKafkaAdminClient(
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=self.client_id,
            request_timeout_ms=self.config.request_timeout_ms,
            metadata_max_age_ms=self.config.metadata_max_age_ms,
            **build_kafka_security_config(self.config),
        )
        try:
            await admin.start()
        except Exception as e:
            raise BrokerConnectionError("Failed to connect admin client", cause=e) from e

        self._admin = admin
        logger.debug("Admin client connected")

    def _require_admin(self) -> AIOKafkaAdminClient:
        if self._admin is None:
            raise ProvisioningError("Admin client not connected. Call connect() first.")
        return self._admin

    async def create_topics(self, topics: Sequence[TopicSpec]) -> None:
        admin = self._require_admin()
        if not topics:
            return

        new_topics = [
            NewTopic(
                name=spec.name,
                num_partitions=spec.num_partitions,
                replication_factor=spec.replication_factor,
                topic_configs=dict(spec.config),
            )
            for spec in topics
        ]

        try:
            response = await admin.create_topics(new_topics, timeout_ms=self.config.request_timeout_ms)
        except TopicAlreadyExistsError:
            logger.debug("Topics already exist", extra={"topics": [t.name for t in topics]})
            return
        except Exception as e:
            raise ProvisioningError(
                "Failed to create topics",
                cause=e,
                context={"topics": [t.name for t in topics]},
            ) from e

        # Per-topic errors come back in the response rather than as exceptions
        for entry in getattr(response, "topic_errors", None) or []:
            name, error_code = entry[0], entry[1]
            if error_code == 0:
                logger.info("Created topic", extra={"target_topic": name})
                continue
            error_type = for_code(error_code)
            if error_type is TopicAlreadyExistsError:
                logger.debug("Topic already exists", extra={"target_topic": name})
                continue
            raise ProvisioningError(
                f"Failed to create topic {name}",
                cause=error_type(),
                context={"target_topic": name, "error_code": error_code},
            )

    async def list_topics(self) -> list[str]:
        admin = self._require_admin()
        try:
            return list(await admin.list_topics())
        except Exception as e:
            raise ProvisioningError("Failed to list topics", cause=e) from e

    async def disconnect(self) -> None:
        if self._admin is None:
            return

        admin, self._admin = self._admin, None
        try:
            await admin.close()
        except Exception:
            logger.warning("Error closing admin client", exc_info=True)


__all__ = ["KafkaAdminClient"]
