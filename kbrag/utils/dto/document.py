from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from kbrag.db.models.document import DocumentStatus


class DocumentResponse(BaseModel):
    id: int
    filename: str
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    permission_group: str
    status: DocumentStatus
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UploadResponse(BaseModel):
    message: str = Field(..., description="Human-readable outcome")
    document_id: Optional[int] = Field(None, description="Registered document ID, when accepted")
    status: str = Field(..., description="accepted or duplicate")
