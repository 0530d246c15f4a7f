import json
from typing import Optional, Protocol

from aiokafka import AIOKafkaProducer

from kbrag.core.config import settings
from kbrag.utils.dto.ingestion import IngestionTask
from kbrag.utils.logger import get_logger, log_kafka_message
from kbrag.utils.metrics import kafka_messages_produced

logger = get_logger("workers.producer")


class TaskPublisher(Protocol):
    async def publish_task(self, task: IngestionTask) -> None: ...


class KafkaProducerService:
    def __init__(self, bootstrap_servers: str = None) -> None:
        self.producer: AIOKafkaProducer | None = None
        self.bootstrap_servers = bootstrap_servers or settings.KAFKA_BROKER
        self.topic = settings.KAFKA_TOPIC

    async def start(self) -> None:
        if self.producer:
            return
        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                acks="all",
                linger_ms=5,
                retry_backoff_ms=200,
                request_timeout_ms=30000,
                value_serializer=lambda v: json.dumps(
                    v, ensure_ascii=False, separators=(",", ":")
                ).encode("utf-8"),
                key_serializer=lambda k: (
                    k.encode("utf-8") if isinstance(k, str) else k
                ),
            )
            await self.producer.start()
            logger.info("Kafka producer started")
        except Exception as e:
            logger.error(f"Failed to start Kafka producer: {e}")
            self.producer = None
            raise

    async def publish(self, topic: str, payload: dict, key: Optional[str] = None) -> None:
        if not self.producer:
            raise RuntimeError("Kafka producer not started")
        await self.producer.send_and_wait(topic, value=payload, key=key)
        kafka_messages_produced.labels(topic=topic).inc()
        log_kafka_message(logger, "PUBLISH", topic, key)

    async def publish_task(self, task: IngestionTask) -> None:
        # Keyed by document so redeliveries of one document share a partition
        await self.publish(self.topic, task.to_message(), key=str(task.document_id))

    async def stop(self) -> None:
        if self.producer:
            await self.producer.stop()
            self.producer = None
            logger.info("Kafka producer stopped")
