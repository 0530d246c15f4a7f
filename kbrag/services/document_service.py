import enum
import hashlib
from dataclasses import dataclass
from pathlib import PurePath
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from kbrag.core.context import RequestContext
from kbrag.core.exceptions import EnqueueError
from kbrag.db.models.document import Document, DocumentStatus
from kbrag.db.repository import DocumentStore
from kbrag.services.storage_service import BlobStore
from kbrag.utils.dto.ingestion import IngestionTask
from kbrag.utils.logger import get_logger
from kbrag.workers.producer import TaskPublisher

logger = get_logger("services.document_service")

BLOB_PREFIX = "rag-docs"


class UploadStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    EMPTY = "empty"
    UNAUTHORIZED = "unauthorized"


class DeleteOutcome(str, enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class UploadResult:
    status: UploadStatus
    document_id: Optional[int] = None


def compute_file_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def blob_key_for(permission_group: str, file_hash: str, filename: str) -> str:
    # Only the final path component of a client-supplied name is kept
    safe_name = PurePath(filename.replace("\\", "/")).name or "upload"
    return f"{BLOB_PREFIX}/{permission_group}/{file_hash}_{safe_name}"


class DocumentService:
    """Upload registration and document lifecycle operations outside the pipeline."""

    def __init__(self, store: DocumentStore, blob_store: BlobStore, publisher: TaskPublisher):
        self.store = store
        self.blob_store = blob_store
        self.publisher = publisher

    async def upload(self, ctx: RequestContext, filename: str, content_type: Optional[str], data: bytes) -> UploadResult:
        """
        Register an uploaded file and hand it to the ingestion pipeline.

        The blob is stored first, then the document row (PENDING), then exactly one
        ingestion task is published. Identical bytes already registered in the
        caller's permission group are reported as a duplicate.
        """
        if not ctx.is_authorized:
            logger.warning("Upload rejected: caller is not authenticated or has no roles")
            return UploadResult(UploadStatus.UNAUTHORIZED)
        if not data:
            return UploadResult(UploadStatus.EMPTY)

        group = ctx.primary_group
        file_hash = compute_file_hash(data)

        if await self.store.exists_by_hash_and_group(file_hash, group):
            logger.warning(f"Duplicate upload: user={ctx.user_id}, hash={file_hash}, group={group}")
            return UploadResult(UploadStatus.DUPLICATE)

        storage_key = await self.blob_store.put(blob_key_for(group, file_hash, filename), data)
        logger.info(f"Stored upload for user {ctx.user_id} at {storage_key}")

        document = Document(
            filename=filename,
            storage_key=storage_key,
            file_size=len(data),
            content_type=content_type,
            file_hash=file_hash,
            permission_group=group,
            status=DocumentStatus.PENDING,
        )
        try:
            document = await self.store.save_document(document)
        except IntegrityError:
            # A concurrent upload of the same bytes won the unique constraint
            logger.warning(f"Duplicate upload detected at insert: hash={file_hash}, group={group}")
            return UploadResult(UploadStatus.DUPLICATE)
        except Exception:
            logger.error(f"Registering upload failed, removing stored blob {storage_key}")
            await self.blob_store.delete(storage_key)
            raise
        logger.info(f"Registered document {document.id} for user {ctx.user_id}")

        await self._enqueue(document, ctx)
        return UploadResult(UploadStatus.ACCEPTED, document.id)

    async def _enqueue(self, document: Document, ctx: RequestContext) -> None:
        task = IngestionTask(
            document_id=document.id,
            blob_key=document.storage_key,
            user_id=ctx.user_id if ctx.user_id is not None else 0,
            permission_group=document.permission_group,
        )
        try:
            await self.publisher.publish_task(task)
        except Exception as e:
            logger.error(
                f"Document {document.id} is registered but its ingestion task was not published: {e}. "
                f"Reprocess the document once the broker is reachable."
            )
            raise EnqueueError(document.id, f"Failed to enqueue document {document.id}: {e}") from e
        logger.info(f"Published ingestion task for document {document.id}")

    async def get_document(self, ctx: RequestContext, document_id: int) -> Optional[Document]:
        document = await self.store.get_document(document_id)
        if document is None or document.permission_group not in ctx.roles:
            return None
        return document

    async def list_documents(self, ctx: RequestContext) -> List[Document]:
        if not ctx.roles:
            return []
        return await self.store.list_documents(list(ctx.roles))

    async def reprocess(self, ctx: RequestContext, document_id: int) -> Optional[Document]:
        """Publish a fresh ingestion task for an existing document. Returns None if not visible."""
        document = await self.get_document(ctx, document_id)
        if document is None:
            return None
        await self._enqueue(document, ctx)
        return document

    async def delete(self, ctx: RequestContext, document_id: int) -> DeleteOutcome:
        """Hard-delete a document: chunks and row in one transaction, then the blob."""
        document = await self.store.get_document(document_id)
        if document is None:
            logger.warning(f"Delete requested for missing document {document_id}")
            return DeleteOutcome.NOT_FOUND
        if document.permission_group not in ctx.roles:
            logger.warning(f"User {ctx.user_id} may not delete document {document_id}")
            return DeleteOutcome.FORBIDDEN

        removed = await self.store.delete_document(document_id)

        if document.storage_key:
            await self.blob_store.delete(document.storage_key)
        else:
            logger.warning(f"Document {document_id} has no storage key, nothing to remove from blob store")

        logger.info(f"Deleted document {document_id} and {removed} chunks")
        return DeleteOutcome.DELETED
