from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from kbrag.api import router
from kbrag.core.redis_client import create_redis_client
from kbrag.db.base import Base, load_all_models
from kbrag.db.repository import DocumentStore
from kbrag.db.sessions import engine
from kbrag.services.cache_manager import CacheManager
from kbrag.services.chat_service import ChatService
from kbrag.services.document_service import DocumentService
from kbrag.services.embedding_service import GeminiEmbeddingService
from kbrag.services.llm_service import GeminiChatService
from kbrag.services.search_service import VectorSearchService
from kbrag.services.storage_service import LocalBlobStore
from kbrag.utils.logger import setup_logging
from kbrag.workers.producer import KafkaProducerService

load_all_models()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(level='INFO', console=True)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    store = DocumentStore()
    redis_client = create_redis_client()
    producer = KafkaProducerService()
    await producer.start()

    app.state.document_service = DocumentService(store, LocalBlobStore(), producer)
    app.state.chat_service = ChatService(
        cache=CacheManager(redis_client),
        search_service=VectorSearchService(store, GeminiEmbeddingService()),
        llm=GeminiChatService(),
    )
    try:
        yield
    finally:
        await producer.stop()
        await redis_client.aclose()
        await engine.dispose()


app = FastAPI(title="kb-rag Knowledge Base API", version="1.0.0", lifespan=lifespan)

# Prometheus metrics
Instrumentator().instrument(app).expose(app)

app.include_router(router.api_router)
