import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "kb-rag"
    SECRET_KEY: str = os.getenv("SECRET_KEY", "your_secret_key")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", 6379))
    REDIS_DB: int = 0

    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql+asyncpg://postgres:postgres@db:5432/kb_rag"
    )
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    KAFKA_BROKER: str = os.getenv("KAFKA_BROKER", "localhost:9092")
    KAFKA_TOPIC: str = "rag.upload"
    KAFKA_DLQ_TOPIC: str = "rag.upload.dlq"
    KAFKA_CONSUMER_GROUP: str = "rag_ingestion_workers"
    KAFKA_DLQ_CONSUMER_GROUP: str = "rag_dead_letter_sink"
    WORKER_CONCURRENCY: int = 5
    WORKER_METRICS_PORT: int = 8001

    UPLOAD_DIR: str = "uploads"

    GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
    EMBEDDING_MODEL: str = "models/text-embedding-004"
    EMBEDDING_DIM: int = 768
    CHAT_MODEL: str = "gemini-1.5-flash"

    # Chunking parameters (token counts unless noted)
    CHUNK_SIZE: int = 800
    CHUNK_OVERLAP: int = 350
    MIN_CHUNK_TOKENS: int = 5
    MAX_CHUNK_CHARS: int = 10000
    KEEP_PARAGRAPHS: bool = True

    IDEMPOTENCY_TTL_SECONDS: int = 3600
    CACHE_TTL_SECONDS: int = 3600
    ERROR_MESSAGE_MAX_LENGTH: int = 1000
    TOP_K: int = 5

    class Config:
        env_file = ".env"

settings = Settings()
