"""Shared pytest configuration, in-memory collaborators and fixtures.

The fakes implement the same method sets as the production adapters
(``DocumentStore``, ``LocalBlobStore``, ``redis.asyncio.Redis``, the Gemini
services and the Kafka producer) so services and the pipeline run unchanged.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
import zipfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.exc import IntegrityError

from kbrag.core.context import RequestContext
from kbrag.db.models.document import Document, DocumentStatus
from kbrag.services.cache_manager import CacheManager, IdempotencyGuard
from kbrag.services.chat_service import ChatService
from kbrag.services.document_service import DocumentService
from kbrag.services.search_service import VectorSearchService
from kbrag.services.text_extractor import TextExtractor
from kbrag.utils.chunking import ChunkingParams, TokenChunking
from kbrag.utils.tokenizer import Tokenizer
from kbrag.workers.pipeline import IngestionPipeline


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ──────────────────────────────────────────────────────────────────────
# In-memory collaborators
# ──────────────────────────────────────────────────────────────────────


class FakeRedis:
    """Subset of ``redis.asyncio.Redis`` used by ``CacheManager``; TTLs are recorded, not enforced."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed


class _MemoryStream:
    def __init__(self, data: bytes) -> None:
        self._data = data

    async def read(self, size: int = -1) -> bytes:
        return self._data


class FakeBlobStore:
    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> str:
        self.blobs[key] = data
        return key

    @asynccontextmanager
    async def open_stream(self, key: str):
        if key not in self.blobs:
            raise FileNotFoundError(key)
        yield _MemoryStream(self.blobs[key])

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


class _FakeChunkWriter:
    def __init__(self, store: "InMemoryDocumentStore", staged: Dict[int, List[Dict[str, Any]]]) -> None:
        self.store = store
        self.staged = staged

    async def delete_chunks(self, document_id: int) -> int:
        return len(self.staged.pop(document_id, []))

    async def insert_chunk(self, document_id, chunk_index, content, metadata, embedding) -> None:
        if self.store.fail_insert_at is not None and chunk_index == self.store.fail_insert_at:
            raise RuntimeError(f"insert failed at chunk {chunk_index}")
        self.staged.setdefault(document_id, []).append({
            "document_id": document_id,
            "chunk_index": chunk_index,
            "content": content,
            "metadata": dict(metadata),
            "embedding": list(embedding),
        })


class InMemoryDocumentStore:
    """Transactional stand-in for ``DocumentStore``: chunk writes are staged and swapped in on commit."""

    def __init__(self) -> None:
        self.documents: Dict[int, Document] = {}
        self.chunks: Dict[int, List[Dict[str, Any]]] = {}
        self.status_history: Dict[int, List[DocumentStatus]] = {}
        self.chunk_commits: Dict[int, int] = {}
        self.fail_insert_at: Optional[int] = None
        self._next_id = 1

    async def get_document(self, document_id: int) -> Optional[Document]:
        return self.documents.get(document_id)

    async def save_document(self, document: Document) -> Document:
        if document.id is None:
            for existing in self.documents.values():
                if (existing.permission_group, existing.file_hash) == (document.permission_group, document.file_hash):
                    raise IntegrityError("INSERT INTO documents", {}, Exception("uq_documents_group_hash"))
            document.id = self._next_id
            document.created_at = datetime.now(timezone.utc)
            self._next_id += 1
        self.documents[document.id] = document
        return document

    async def update_status(self, document_id: int, status: DocumentStatus, error_message: Optional[str] = None):
        document = self.documents.get(document_id)
        if document is None:
            return None
        document.status = status
        document.error_message = error_message
        self.status_history.setdefault(document_id, []).append(status)
        return document

    async def exists_by_hash_and_group(self, file_hash: str, permission_group: str) -> bool:
        return any(
            d.file_hash == file_hash and d.permission_group == permission_group
            for d in self.documents.values()
        )

    async def list_documents(self, permission_groups: List[str]) -> List[Document]:
        return [d for d in self.documents.values() if d.permission_group in permission_groups]

    @asynccontextmanager
    async def chunk_transaction(self):
        staged = {doc_id: list(rows) for doc_id, rows in self.chunks.items()}
        writer = _FakeChunkWriter(self, staged)
        yield writer
        # Only reached when the block did not raise
        for doc_id in set(self.chunks) | set(staged):
            if self.chunks.get(doc_id) != staged.get(doc_id):
                self.chunk_commits[doc_id] = self.chunk_commits.get(doc_id, 0) + 1
        self.chunks = {doc_id: rows for doc_id, rows in staged.items() if rows}

    async def delete_document(self, document_id: int) -> int:
        removed = len(self.chunks.pop(document_id, []))
        self.documents.pop(document_id, None)
        return removed

    async def nearest_chunks(self, vector, allowed_groups, top_k) -> List[str]:
        candidates = []
        for doc_id, rows in self.chunks.items():
            document = self.documents.get(doc_id)
            if document is None or document.permission_group not in allowed_groups:
                continue
            for row in rows:
                distance = math.dist(vector, row["embedding"])
                candidates.append((distance, doc_id, row["chunk_index"], row["content"]))
        candidates.sort()
        return [content for *_, content in candidates[:top_k]]


_WORD = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Deterministic bag-of-words embedding: texts sharing words end up close together."""

    DIM = 64

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None

    async def embed_text(self, text: str, task_type: str = "retrieval_document") -> List[float]:
        self.calls.append(text)
        await asyncio.sleep(0)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("embedding service unavailable")
        vector = [0.0] * self.DIM
        for word in _WORD.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.DIM
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]


class FakeLLM:
    def __init__(self, answer: str = "The answer is 42.") -> None:
        self.answer = answer
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


class FakePublisher:
    def __init__(self) -> None:
        self.tasks = []
        self.fail = False

    async def publish_task(self, task) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.tasks.append(task)


# ──────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(redis_client: FakeRedis) -> CacheManager:
    return CacheManager(redis_client, default_ttl=3600)


@pytest.fixture
def guard(cache: CacheManager) -> IdempotencyGuard:
    return IdempotencyGuard(cache, ttl=3600)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def chunker() -> TokenChunking:
    params = ChunkingParams(chunk_size=20, chunk_overlap=5, min_chunk_tokens=1, max_chunk_chars=10000, keep_paragraphs=True)
    return TokenChunking(params, Tokenizer(lightweight=True))


@pytest.fixture
def pipeline(store, blob_store, embedder, guard, chunker) -> IngestionPipeline:
    return IngestionPipeline(
        store=store,
        blob_store=blob_store,
        extractor=TextExtractor(),
        embedder=embedder,
        guard=guard,
        chunker=chunker,
        error_message_max_length=1000,
    )


@pytest.fixture
def document_service(store, blob_store, publisher) -> DocumentService:
    return DocumentService(store, blob_store, publisher)


@pytest.fixture
def chat_service(cache, store, embedder, llm) -> ChatService:
    return ChatService(cache, VectorSearchService(store, embedder, top_k=3), llm, cache_ttl=3600)


@pytest.fixture
def hr_ctx() -> RequestContext:
    return RequestContext(user_id=1, roles=["hr"])


@pytest.fixture
def eng_ctx() -> RequestContext:
    return RequestContext(user_id=2, roles=["eng"])


_WORD_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"


@pytest.fixture
def make_docx():
    """Build a minimal Word document whose body holds one paragraph per argument."""
    def build(*paragraphs: str) -> bytes:
        body = "".join(f"<w:p><w:r><w:t>{p}</w:t></w:r></w:p>" for p in paragraphs)
        document_xml = f'<?xml version="1.0" encoding="UTF-8"?><w:document xmlns:w="{_WORD_NS}"><w:body>{body}</w:body></w:document>'
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("word/document.xml", document_xml)
        return buffer.getvalue()
    return build
