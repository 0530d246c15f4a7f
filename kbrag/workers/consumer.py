import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from aiokafka import AIOKafkaConsumer, TopicPartition
from pydantic import ValidationError

from kbrag.core.config import settings
from kbrag.utils.dto.ingestion import IngestionTask
from kbrag.utils.logger import get_logger, log_kafka_message
from kbrag.utils.metrics import (
    kafka_messages_consumed,
    kafka_messages_acked,
    kafka_messages_dead_lettered,
    kafka_message_processing_duration,
    kafka_messages_in_flight,
)
from kbrag.workers.pipeline import Delivery, IngestionPipeline
from kbrag.workers.producer import KafkaProducerService

logger = get_logger("workers.consumer")

MessageHandler = Callable[[Dict[str, Any]], Awaitable[Delivery]]


def ingestion_handler(pipeline: IngestionPipeline) -> MessageHandler:
    """Adapt the pipeline to raw message payloads; malformed tasks go to the dead-letter topic."""
    async def handle(payload: Dict[str, Any]) -> Delivery:
        try:
            task = IngestionTask.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Invalid ingestion task {payload}: {e.error_count()} validation error(s)")
            return Delivery.DEAD_LETTER
        return await pipeline.handle(task)
    return handle


class KafkaConsumer:
    """
    Manual-commit consumer. Each message is settled exactly once: its offset is
    committed after the handler returns ACK, or after the payload has been
    forwarded to the dead-letter topic when the handler returns DEAD_LETTER.
    """

    def __init__(
        self,
        topic: str,
        group_id: str,
        dlq_topic: Optional[str] = None,
        dlq_producer: Optional[KafkaProducerService] = None,
        name: str = "consumer",
    ):
        self.topic = topic
        self.group_id = group_id
        self.dlq_topic = dlq_topic
        self.dlq_producer = dlq_producer
        self.name = name
        self.consumer: Optional[AIOKafkaConsumer] = None
        self._is_running = False
        self._acked_messages = 0
        self._dead_lettered_messages = 0

        self.consumer_config = {
            "bootstrap_servers": settings.KAFKA_BROKER,
            "group_id": self.group_id,
            "enable_auto_commit": False,  # Offsets are committed per settled message
            "auto_offset_reset": "earliest",
            "max_poll_records": 1,
            "session_timeout_ms": 30000,
            "heartbeat_interval_ms": 10000,
            "max_poll_interval_ms": 600000,
            "value_deserializer": self._deserialize_message
        }

    @staticmethod
    def _deserialize_message(value: bytes) -> Dict[str, Any]:
        """Decode a JSON payload without raising.

        Undecodable payloads come back marked `_invalid` with the raw text so the
        consumer loop can dead-letter them instead of crashing.
        """
        decoded = value.decode("utf-8", errors="replace")
        try:
            data = json.loads(decoded)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode JSON message: {e}")
            return {"_invalid": True, "validation_error": f"JSONDecodeError: {e}", "_raw": decoded}

        if not isinstance(data, dict):
            return {"_invalid": True, "validation_error": "Payload is not a JSON object", "_raw": decoded}
        return data

    async def start(self, handler: MessageHandler) -> None:
        self.consumer = AIOKafkaConsumer(self.topic, **self.consumer_config)

        try:
            await self.consumer.start()
            self._is_running = True
            logger.info(f"Kafka {self.name} started (group: {self.group_id}, topic: {self.topic})")

            async for msg in self.consumer:
                if not self._is_running:
                    break
                kafka_messages_consumed.labels(consumer_group=self.group_id, topic=msg.topic).inc()
                await self.process_message(msg, handler)

        except Exception as e:
            logger.error(f"Consumer loop failed: {e}")
            raise
        finally:
            await self._safe_stop()

    async def process_message(self, msg, handler: MessageHandler) -> Delivery:
        payload = msg.value
        reason = None
        start_time = time.time()
        kafka_messages_in_flight.labels(consumer_group=self.group_id, topic=msg.topic).inc()

        try:
            if payload.get("_invalid"):
                reason = payload.get("validation_error") or "invalid_message"
                logger.warning(f"Invalid message at {msg.topic}[{msg.partition}]@{msg.offset}: {reason}")
                outcome = Delivery.DEAD_LETTER
            else:
                try:
                    outcome = await handler(payload)
                except Exception as e:
                    # Handlers settle their own failures; this only guards against bugs
                    logger.exception(f"Handler raised for message at offset {msg.offset}")
                    reason = f"Unhandled error: {e}"
                    outcome = Delivery.DEAD_LETTER
        finally:
            kafka_message_processing_duration.labels(consumer_group=self.group_id, topic=msg.topic).observe(time.time() - start_time)
            kafka_messages_in_flight.labels(consumer_group=self.group_id, topic=msg.topic).dec()

        if outcome is Delivery.DEAD_LETTER:
            await self._dead_letter(msg, reason or "ingestion failed")

        await self._ack(msg)
        return outcome

    async def _dead_letter(self, msg, reason: str) -> None:
        self._dead_lettered_messages += 1
        kafka_messages_dead_lettered.labels(consumer_group=self.group_id, topic=msg.topic, reason="invalid" if msg.value.get("_invalid") else "failed").inc()

        if not self.dlq_topic or not self.dlq_producer:
            logger.error(f"No dead-letter topic configured for {self.topic}; dropping message at offset {msg.offset}")
            return

        dlq_payload = {
            **{k: v for k, v in msg.value.items() if k != "_invalid"},
            "dlq_reason": reason,
            "dlq_source_topic": msg.topic,
            "dlq_timestamp": time.time(),
        }
        key = msg.key.decode("utf-8") if isinstance(msg.key, bytes) else msg.key
        try:
            await self.dlq_producer.publish(self.dlq_topic, dlq_payload, key=key)
            log_kafka_message(logger, "DEAD_LETTER", self.dlq_topic, key)
        except Exception as e:
            # The document row already carries the failure; do not loop the message
            logger.error(f"Failed to publish message at offset {msg.offset} to DLQ: {e}")

    async def _ack(self, msg) -> None:
        await self.consumer.commit({TopicPartition(msg.topic, msg.partition): msg.offset + 1})
        self._acked_messages += 1
        kafka_messages_acked.labels(consumer_group=self.group_id, topic=msg.topic).inc()

    def stop(self) -> None:
        self._is_running = False

    async def _safe_stop(self):
        if self.consumer:
            await self.consumer.stop()
            self._is_running = False
            logger.info(f"Kafka {self.name} stopped. Settled: {self._acked_messages}, "
                        f"dead-lettered: {self._dead_lettered_messages}")

    def get_stats(self) -> Dict[str, int]:
        return {
            "acked_messages": self._acked_messages,
            "dead_lettered_messages": self._dead_lettered_messages,
        }
