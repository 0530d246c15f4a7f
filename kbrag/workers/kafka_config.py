from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import TopicAlreadyExistsError, KafkaError
from kbrag.core.config import settings
from kbrag.utils.logger import get_logger
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = get_logger("workers.kafka_config")


class KafkaTopicManager:
    """Manages Kafka topics creation and configuration"""

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((KafkaError, ConnectionError))
    )
    async def ensure_topics():
        """Create the ingestion topic and its dead-letter topic if missing"""
        admin = AIOKafkaAdminClient(bootstrap_servers=settings.KAFKA_BROKER)
        try:
            await admin.start()

            topics = [
                NewTopic(
                    name=settings.KAFKA_TOPIC,
                    num_partitions=10,
                    replication_factor=1,
                    topic_configs={
                        "retention.ms": "604800000",  # 7 days
                        "cleanup.policy": "delete"
                    }
                ),
                NewTopic(
                    name=settings.KAFKA_DLQ_TOPIC,
                    num_partitions=3,
                    replication_factor=1,
                    topic_configs={
                        "retention.ms": "2592000000",  # 30 days
                        "cleanup.policy": "delete"
                    }
                ),
            ]

            for topic in topics:
                try:
                    await admin.create_topics([topic])
                    logger.info(f"Created Kafka topic: {topic.name}")
                except TopicAlreadyExistsError:
                    logger.debug(f"Kafka topic already exists: {topic.name}")

        except Exception as e:
            logger.error(f"Error creating Kafka topics: {e}")
            raise
        finally:
            await admin.close()
