from sqlalchemy import Column, String, Text, DateTime, Integer, BigInteger, Enum, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from kbrag.db.base import Base
import enum


class DocumentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String, nullable=False)
    storage_key = Column(String, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    content_type = Column(String, nullable=True)
    file_hash = Column(String(64), nullable=False)
    permission_group = Column(String, nullable=False, index=True)
    status = Column(Enum(DocumentStatus, name="document_status"), default=DocumentStatus.PENDING, nullable=False, index=True)
    error_message = Column(Text, nullable=True)  # Truncated diagnostic of the last failed attempt

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    chunks = relationship("Chunk", back_populates="document", cascade="all, delete-orphan", passive_deletes=True)

    # Identical content may be ingested once per permission group
    __table_args__ = (
        UniqueConstraint("permission_group", "file_hash", name="uq_documents_group_hash"),
    )

    def __repr__(self) -> str:
        return f"<Document id={self.id} filename={self.filename!r} status={self.status}>"
