from pydantic import BaseModel, ConfigDict, Field


class IngestionTask(BaseModel):
    """Broker payload asking the pipeline to ingest one registered document."""
    document_id: int = Field(..., alias="documentId", description="Registered document ID")
    blob_key: str = Field(..., alias="blobKey", min_length=1, description="Blob store key of the file")
    user_id: int = Field(..., alias="userId", description="Uploading user")
    permission_group: str = Field(..., alias="permissionGroup", min_length=1, description="Owning permission group")

    model_config = ConfigDict(populate_by_name=True)

    def to_message(self) -> dict:
        return self.model_dump(by_alias=True)
