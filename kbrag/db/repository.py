from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import Select, delete, exists, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from kbrag.db.models.chunks import Chunk
from kbrag.db.models.document import Document, DocumentStatus
from kbrag.db.sessions import AsyncSessionLocal
from kbrag.utils.logger import get_logger, log_database_operation

logger = get_logger("db.repository")


def nearest_chunks_statement(vector: Sequence[float], allowed_groups: List[str], top_k: int) -> Select:
    """Chunk texts ordered by L2 distance to `vector`, limited to documents in `allowed_groups`."""
    return (
        select(Chunk.content)
        .join(Document, Chunk.document_id == Document.id)
        .where(Document.permission_group.in_(allowed_groups))
        .order_by(Chunk.embedding.l2_distance(list(vector)))
        .limit(top_k)
    )


class ChunkWriter:
    """Chunk operations bound to one open transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def delete_chunks(self, document_id: int) -> int:
        log_database_operation(logger, "DELETE", "document_chunks", str(document_id))
        result = await self.session.execute(
            delete(Chunk).where(Chunk.document_id == document_id)
        )
        return result.rowcount or 0

    async def insert_chunk(
        self,
        document_id: int,
        chunk_index: int,
        content: str,
        metadata: Dict[str, Any],
        embedding: Sequence[float],
    ) -> None:
        self.session.add(Chunk(
            document_id=document_id,
            chunk_index=chunk_index,
            content=content,
            chunk_metadata=metadata,
            embedding=list(embedding),
        ))
        # Flush per row so a bad row fails inside the transaction, not at commit
        await self.session.flush()
        log_database_operation(logger, "INSERT", "document_chunks", f"{document_id}:{chunk_index}")


class DocumentStore:
    """Relational store for documents and their embedded chunks (PostgreSQL + pgvector)."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_document(self, document_id: int) -> Optional[Document]:
        async with self.session_factory() as db:
            log_database_operation(logger, "SELECT", "documents", str(document_id))
            return await db.get(Document, document_id)

    async def save_document(self, document: Document) -> Document:
        """Insert a new document or persist changes to an existing one."""
        async with self.session_factory() as db:
            try:
                if document.id is None:
                    db.add(document)
                    log_database_operation(logger, "INSERT", "documents")
                    await db.commit()
                    await db.refresh(document)
                    return document

                merged = await db.merge(document)
                log_database_operation(logger, "UPDATE", "documents", str(document.id))
                await db.commit()
                return merged
            except SQLAlchemyError:
                await db.rollback()
                raise

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(OperationalError)
    )
    async def update_status(
        self,
        document_id: int,
        status: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> Optional[Document]:
        """Reload the document under a row lock and move it to `status`."""
        async with self.session_factory() as db:
            try:
                log_database_operation(logger, "SELECT", "documents", str(document_id))
                result = await db.execute(
                    select(Document)
                    .where(Document.id == document_id)
                    .with_for_update()
                )
                document = result.scalar_one_or_none()
                if not document:
                    return None

                document.status = status
                document.error_message = error_message
                log_database_operation(logger, "UPDATE", "documents", str(document_id))
                await db.commit()
                return document
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Database error updating document {document_id}: {e}")
                raise

    async def exists_by_hash_and_group(self, file_hash: str, permission_group: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                select(exists().where(
                    Document.file_hash == file_hash,
                    Document.permission_group == permission_group,
                ))
            )
            return bool(result.scalar())

    async def list_documents(self, permission_groups: List[str]) -> List[Document]:
        async with self.session_factory() as db:
            log_database_operation(logger, "SELECT", "documents", f"groups_{len(permission_groups)}")
            result = await db.execute(
                select(Document)
                .where(Document.permission_group.in_(permission_groups))
                .order_by(Document.created_at.desc())
            )
            return list(result.scalars().all())

    @asynccontextmanager
    async def chunk_transaction(self) -> AsyncIterator[ChunkWriter]:
        """Open one transaction for a chunk-set replacement.

        Commits when the block exits normally, rolls back on any exception.
        """
        async with self.session_factory() as db:
            async with db.begin():
                yield ChunkWriter(db)

    async def delete_document(self, document_id: int) -> int:
        """Remove a document and its chunks in one transaction. Returns the chunk count removed."""
        async with self.session_factory() as db:
            async with db.begin():
                removed = await ChunkWriter(db).delete_chunks(document_id)
                log_database_operation(logger, "DELETE", "documents", str(document_id))
                await db.execute(delete(Document).where(Document.id == document_id))
        return removed

    async def nearest_chunks(
        self,
        vector: Sequence[float],
        allowed_groups: List[str],
        top_k: int,
    ) -> List[str]:
        """Chunk texts closest to `vector` (L2), restricted to documents in `allowed_groups`."""
        async with self.session_factory() as db:
            log_database_operation(logger, "SELECT", "document_chunks", f"knn_{top_k}")
            result = await db.execute(nearest_chunks_statement(vector, allowed_groups, top_k))
            return list(result.scalars().all())
