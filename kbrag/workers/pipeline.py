"""
Document ingestion pipeline.

One broker delivery drives one attempt: claim the per-document marker, move the
document to PROCESSING, extract its text, chunk it and replace its stored chunk
set inside a single transaction, then settle the document as COMPLETED or
FAILED. Every path ends in exactly one `Delivery` outcome; the consumer turns
that into an offset commit or a dead-letter publish.
"""
import asyncio
import enum
import time
from dataclasses import dataclass
from typing import List, Union

from redis.exceptions import RedisError

from kbrag.core.config import settings
from kbrag.db.models.document import Document, DocumentStatus
from kbrag.db.repository import DocumentStore
from kbrag.services.cache_manager import IdempotencyGuard
from kbrag.services.embedding_service import Embedder
from kbrag.services.storage_service import BlobStore
from kbrag.services.text_extractor import TextExtractor
from kbrag.utils.chunking import ChunkingParams, ChunkingStrategy, TokenChunking, clean_text
from kbrag.utils.dto.ingestion import IngestionTask
from kbrag.utils.logger import get_logger, log_embedding_operation
from kbrag.utils.metrics import ingestion_outcomes, ingestion_chunks_stored, ingestion_duration

logger = get_logger("workers.pipeline")

CHUNK_SOURCE = "kafka"


class Delivery(str, enum.Enum):
    ACK = "ack"                    # remove from the ingestion topic
    DEAD_LETTER = "dead_letter"    # route to the dead-letter topic, then remove


class FailureKind(str, enum.Enum):
    EXTRACTION = "extraction"
    EMPTY_CONTENT = "empty_content"
    STORAGE = "storage"


@dataclass(frozen=True)
class IngestionOk:
    chunk_count: int


@dataclass(frozen=True)
class IngestionError:
    kind: FailureKind
    message: str


IngestionResult = Union[IngestionOk, IngestionError]


def describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


def truncate_message(message: str, limit: int) -> str:
    return message if len(message) <= limit else message[:limit]


class IngestionPipeline:

    def __init__(
        self,
        store: DocumentStore,
        blob_store: BlobStore,
        extractor: TextExtractor,
        embedder: Embedder,
        guard: IdempotencyGuard,
        chunker: ChunkingStrategy = None,
        error_message_max_length: int = None,
    ):
        self.store = store
        self.blob_store = blob_store
        self.extractor = extractor
        self.embedder = embedder
        self.guard = guard
        self.chunker = chunker or TokenChunking(ChunkingParams.from_settings())
        self.error_message_max_length = error_message_max_length or settings.ERROR_MESSAGE_MAX_LENGTH

    async def handle(self, task: IngestionTask) -> Delivery:
        """Process one delivery of `task` and decide how the broker should settle it."""
        document_id = task.document_id
        logger.info(f"Received ingestion task for document {document_id} (group {task.permission_group})")

        try:
            acquired = await self.guard.acquire(document_id)
        except RedisError as e:
            # Without the marker another worker may own this document; leave its state alone
            logger.error(f"Idempotency guard unavailable for document {document_id}: {e}")
            return Delivery.DEAD_LETTER

        if not acquired:
            logger.warning(f"Duplicate delivery for document {document_id} while in flight, skipping")
            ingestion_outcomes.labels(outcome="duplicate").inc()
            return Delivery.ACK

        start = time.time()
        try:
            return await self._attempt(task)
        finally:
            await self.guard.release(document_id)
            ingestion_duration.observe(time.time() - start)

    async def _attempt(self, task: IngestionTask) -> Delivery:
        document_id = task.document_id
        try:
            document = await self.store.get_document(document_id)
        except Exception as e:
            logger.exception(f"Failed to load document {document_id}")
            return await self._settle_failure(document_id, IngestionError(FailureKind.STORAGE, describe_error(e)))

        if document is None:
            # Retrying cannot recreate the record
            logger.error(f"Document {document_id} not found, dropping ingestion task")
            ingestion_outcomes.labels(outcome="missing").inc()
            return Delivery.ACK

        try:
            await self.store.update_status(document_id, DocumentStatus.PROCESSING)
            result = await self.process(document, task)
        except Exception as e:
            logger.exception(f"Unexpected error ingesting document {document_id}")
            result = IngestionError(FailureKind.STORAGE, describe_error(e))

        if isinstance(result, IngestionOk):
            try:
                await self.store.update_status(document_id, DocumentStatus.COMPLETED)
            except Exception as e:
                logger.exception(f"Failed to mark document {document_id} COMPLETED")
                result = IngestionError(FailureKind.STORAGE, describe_error(e))
            else:
                ingestion_outcomes.labels(outcome="completed").inc()
                ingestion_chunks_stored.inc(result.chunk_count)
                logger.info(f"Document {document_id} ingested: {result.chunk_count} chunks")
                return Delivery.ACK

        return await self._settle_failure(document_id, result)

    async def process(self, document: Document, task: IngestionTask) -> IngestionResult:
        """Extract, chunk, embed and store. Returns a result instead of raising."""
        try:
            async with self.blob_store.open_stream(task.blob_key) as stream:
                text = await self.extractor.extract(stream, document.filename)
        except Exception as e:
            logger.error(f"Extraction failed for document {document.id} ({document.filename}): {e}")
            return IngestionError(FailureKind.EXTRACTION, describe_error(e))

        loop = asyncio.get_running_loop()
        chunks = await loop.run_in_executor(None, self.chunker.chunk, clean_text(text))
        segments: List[str] = [chunk["text"] for chunk in chunks]
        if not segments:
            return IngestionError(FailureKind.EMPTY_CONTENT, f"No text chunks could be produced from {document.filename}")

        try:
            async with self.store.chunk_transaction() as writer:
                removed = await writer.delete_chunks(document.id)
                if removed:
                    logger.info(f"Replacing {removed} existing chunks of document {document.id}")

                for chunk_index, segment in enumerate(segments):
                    metadata = {
                        "source": CHUNK_SOURCE,
                        "filename": document.filename,
                        "document_id": document.id,
                        "chunk_index": chunk_index,
                    }
                    log_embedding_operation(logger, "GENERATE", f"chunk {chunk_index} of document {document.id}", task.permission_group)
                    embedding = await self.embedder.embed_text(segment)
                    await writer.insert_chunk(document.id, chunk_index, segment, metadata, embedding)
        except Exception as e:
            logger.error(f"Chunk storage rolled back for document {document.id}: {e}")
            return IngestionError(FailureKind.STORAGE, describe_error(e))

        return IngestionOk(chunk_count=len(segments))

    async def _settle_failure(self, document_id: int, error: IngestionError) -> Delivery:
        message = truncate_message(error.message, self.error_message_max_length)
        try:
            document = await self.store.update_status(document_id, DocumentStatus.FAILED, message)
            if document is None:
                logger.warning(f"Document {document_id} vanished before it could be marked FAILED")
        except Exception as e:
            logger.error(f"Failed to record FAILED status for document {document_id}: {e}")

        ingestion_outcomes.labels(outcome="failed").inc()
        logger.error(f"Ingestion of document {document_id} failed ({error.kind.value}): {message}")
        return Delivery.DEAD_LETTER
