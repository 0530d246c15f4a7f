import time
from typing import List

from kbrag.core.config import settings
from kbrag.db.repository import DocumentStore
from kbrag.services.embedding_service import Embedder
from kbrag.utils.logger import get_logger, log_embedding_operation

logger = get_logger("services.search")


class VectorSearchService:
    """Nearest-neighbour chunk retrieval restricted to the caller's permission groups."""

    def __init__(self, store: DocumentStore, embedder: Embedder, top_k: int = None):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k or settings.TOP_K

    async def search(self, query: str, permission_groups: List[str]) -> List[str]:
        """
        Return the texts of the `top_k` chunks closest to `query`, nearest first.

        Only chunks whose document belongs to one of `permission_groups` are considered.
        """
        if not permission_groups:
            return []

        start_time = time.time()
        scope = ",".join(sorted(set(permission_groups)))

        log_embedding_operation(logger, "GENERATE", "query", scope)
        query_embedding = await self.embedder.embed_text(query, task_type="retrieval_query")
        embedding_time = (time.time() - start_time) * 1000
        logger.debug(f"Generated query embedding ({len(query_embedding)} dims) in {embedding_time:.2f}ms")

        log_embedding_operation(logger, "SEARCH", "query", scope)
        contexts = await self.store.nearest_chunks(query_embedding, list(permission_groups), self.top_k)

        total_time = (time.time() - start_time) * 1000
        logger.info(f"Vector search completed in {total_time:.2f}ms, found {len(contexts)} chunks")
        return contexts
