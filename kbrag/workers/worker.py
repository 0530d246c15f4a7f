"""Ingestion worker pool and dead-letter sink, with Prometheus metrics support"""
import asyncio
from typing import Any, Dict

from kbrag.core.config import settings
from kbrag.core.redis_client import create_redis_client
from kbrag.db.base import load_all_models
from kbrag.db.repository import DocumentStore
from kbrag.services.cache_manager import CacheManager, IdempotencyGuard
from kbrag.services.embedding_service import GeminiEmbeddingService
from kbrag.services.storage_service import LocalBlobStore
from kbrag.services.text_extractor import TextExtractor
from kbrag.utils.logger import get_logger, setup_logging
from kbrag.utils.metrics import start_metrics_server
from kbrag.workers.consumer import KafkaConsumer, ingestion_handler
from kbrag.workers.dead_letter import DeadLetterSink
from kbrag.workers.kafka_config import KafkaTopicManager
from kbrag.workers.pipeline import Delivery, IngestionPipeline
from kbrag.workers.producer import KafkaProducerService

load_all_models()

logger = get_logger("workers.worker")


def build_pipeline() -> IngestionPipeline:
    cache = CacheManager(create_redis_client())
    return IngestionPipeline(
        store=DocumentStore(),
        blob_store=LocalBlobStore(),
        extractor=TextExtractor(),
        embedder=GeminiEmbeddingService(),
        guard=IdempotencyGuard(cache),
    )


async def run_ingestion_workers(pipeline: IngestionPipeline, dlq_producer: KafkaProducerService) -> None:
    """Run WORKER_CONCURRENCY consumers in one consumer group; Kafka spreads partitions across them."""
    handler = ingestion_handler(pipeline)
    consumers = [
        KafkaConsumer(
            topic=settings.KAFKA_TOPIC,
            group_id=settings.KAFKA_CONSUMER_GROUP,
            dlq_topic=settings.KAFKA_DLQ_TOPIC,
            dlq_producer=dlq_producer,
            name=f"ingestion-worker-{i}",
        )
        for i in range(settings.WORKER_CONCURRENCY)
    ]
    logger.info(f"Starting {len(consumers)} ingestion consumers")
    await asyncio.gather(*(consumer.start(handler) for consumer in consumers))


async def run_dead_letter_sink() -> None:
    sink = DeadLetterSink()

    async def handle(payload: Dict[str, Any]) -> Delivery:
        return sink.handle(payload)

    consumer = KafkaConsumer(
        topic=settings.KAFKA_DLQ_TOPIC,
        group_id=settings.KAFKA_DLQ_CONSUMER_GROUP,
        name="dead-letter-sink",
    )
    await consumer.start(handle)


async def main():
    try:
        start_metrics_server(port=settings.WORKER_METRICS_PORT)
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")

    logger.info("Starting Kafka ingestion worker...")
    await KafkaTopicManager.ensure_topics()

    pipeline = build_pipeline()
    dlq_producer = KafkaProducerService()
    await dlq_producer.start()
    try:
        await asyncio.gather(
            run_ingestion_workers(pipeline, dlq_producer),
            run_dead_letter_sink(),
        )
    finally:
        await dlq_producer.stop()


if __name__ == "__main__":
    setup_logging(level='INFO', console=True, file=True)
    asyncio.run(main())
