from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, Path, UploadFile
from fastapi.responses import JSONResponse

from kbrag.api.deps import get_document_service
from kbrag.core.auth import get_request_context
from kbrag.core.context import RequestContext
from kbrag.core.exceptions import EnqueueError
from kbrag.services.document_service import DeleteOutcome, DocumentService, UploadStatus
from kbrag.utils.dto.document import DocumentResponse, UploadResponse
from kbrag.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _reject_unauthorized(ctx: RequestContext) -> None:
    if ctx.user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not ctx.roles:
        raise HTTPException(status_code=403, detail="No permission group assigned")


@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    ctx: RequestContext = Depends(get_request_context),
    service: DocumentService = Depends(get_document_service),
):
    _reject_unauthorized(ctx)
    data = await file.read()
    logger.info(f"Upload of '{file.filename}' ({len(data)} bytes) by user {ctx.user_id}")

    try:
        result = await service.upload(ctx, file.filename or "upload", file.content_type, data)
    except EnqueueError as e:
        raise HTTPException(status_code=503, detail=f"Document {e.document_id} registered but not queued; retry via reprocess")

    if result.status is UploadStatus.EMPTY:
        raise HTTPException(status_code=422, detail="Uploaded file is empty")
    if result.status is UploadStatus.DUPLICATE:
        return UploadResponse(message="File already exists in this permission group", status=result.status.value)

    body = UploadResponse(
        message="File uploaded, processing in background",
        document_id=result.document_id,
        status=result.status.value,
    )
    return JSONResponse(status_code=202, content=body.model_dump())


@router.get("/", response_model=List[DocumentResponse])
async def list_documents(
    ctx: RequestContext = Depends(get_request_context),
    service: DocumentService = Depends(get_document_service),
):
    """List documents in the caller's permission groups."""
    _reject_unauthorized(ctx)
    return await service.list_documents(ctx)


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int = Path(..., description="ID of the document"),
    ctx: RequestContext = Depends(get_request_context),
    service: DocumentService = Depends(get_document_service),
):
    _reject_unauthorized(ctx)
    document = await service.get_document(ctx, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.post("/{document_id}/reprocess", response_model=DocumentResponse, status_code=202)
async def reprocess_document(
    document_id: int = Path(..., description="ID of the document to ingest again"),
    ctx: RequestContext = Depends(get_request_context),
    service: DocumentService = Depends(get_document_service),
):
    _reject_unauthorized(ctx)
    try:
        document = await service.reprocess(ctx, document_id)
    except EnqueueError:
        raise HTTPException(status_code=503, detail="Broker unavailable")
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.delete("/{document_id}")
async def delete_document(
    document_id: int = Path(..., description="ID of the document to delete"),
    ctx: RequestContext = Depends(get_request_context),
    service: DocumentService = Depends(get_document_service),
):
    _reject_unauthorized(ctx)
    outcome = await service.delete(ctx, document_id)
    if outcome is DeleteOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Document not found")
    if outcome is DeleteOutcome.FORBIDDEN:
        raise HTTPException(status_code=403, detail="Document belongs to another permission group")
    return {"message": "Deleted", "document_id": document_id}
