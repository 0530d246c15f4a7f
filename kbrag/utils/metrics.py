"""Prometheus metrics for workers and application monitoring"""
from prometheus_client import Counter, Histogram, Gauge
from prometheus_client import start_http_server
from kbrag.utils.logger import get_logger

logger = get_logger("utils.metrics")

# Kafka consumer metrics
kafka_messages_consumed = Counter(
    'kafka_messages_consumed_total',
    'Total number of Kafka messages consumed',
    ['consumer_group', 'topic']
)

kafka_messages_acked = Counter(
    'kafka_messages_acked_total',
    'Total number of Kafka messages acknowledged (offset committed)',
    ['consumer_group', 'topic']
)

kafka_messages_dead_lettered = Counter(
    'kafka_messages_dead_lettered_total',
    'Total number of Kafka messages routed to the dead-letter topic',
    ['consumer_group', 'topic', 'reason']
)

kafka_message_processing_duration = Histogram(
    'kafka_message_processing_duration_seconds',
    'Time spent processing Kafka messages',
    ['consumer_group', 'topic'],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0]
)

kafka_messages_in_flight = Gauge(
    'kafka_messages_in_flight',
    'Number of Kafka messages currently being processed',
    ['consumer_group', 'topic']
)

# Kafka producer metrics
kafka_messages_produced = Counter(
    'kafka_messages_produced_total',
    'Total number of Kafka messages produced',
    ['topic']
)

# Ingestion pipeline metrics
ingestion_outcomes = Counter(
    'ingestion_outcomes_total',
    'Ingestion attempts by outcome',
    ['outcome']  # completed, failed, duplicate, missing
)

ingestion_chunks_stored = Counter(
    'ingestion_chunks_stored_total',
    'Chunks committed by the ingestion pipeline'
)

ingestion_duration = Histogram(
    'ingestion_duration_seconds',
    'Time spent on one ingestion attempt',
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0]
)

dead_letters_received = Counter(
    'dead_letters_received_total',
    'Messages received by the dead-letter sink'
)

# Embedding service metrics
embedding_generation_total = Counter(
    'embedding_generation_total',
    'Total number of embeddings generated',
    ['status']  # success, failed
)

embedding_generation_duration = Histogram(
    'embedding_generation_duration_seconds',
    'Time spent generating embeddings',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0]
)

# Answer cache metrics
chat_cache_requests = Counter(
    'chat_cache_requests_total',
    'Answer cache lookups',
    ['result']  # hit, miss
)

llm_generation_duration = Histogram(
    'llm_generation_duration_seconds',
    'Time spent waiting for the language model',
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

def start_metrics_server(port=8001):
    """Start Prometheus metrics server"""
    start_http_server(port)
    logger.info(f"Prometheus metrics server started on port {port}")
