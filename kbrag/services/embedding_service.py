import asyncio
import time
from functools import partial
from typing import List, Protocol

import google.generativeai as genai
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from kbrag.core.config import settings
from kbrag.utils.logger import get_logger
from kbrag.utils.metrics import embedding_generation_total, embedding_generation_duration

logger = get_logger("services.embedding_service")


class Embedder(Protocol):
    async def embed_text(self, text: str, task_type: str = "retrieval_document") -> List[float]: ...


class GeminiEmbeddingService:

    def __init__(self, model: str = None, api_key: str = None):
        api_key = api_key or settings.GEMINI_API_KEY
        if not api_key:
            raise ValueError("Missing GEMINI_API_KEY in environment")
        genai.configure(api_key=api_key)
        self.model = model or settings.EMBEDDING_MODEL

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((ConnectionError, TimeoutError)),
        reraise=True
    )
    async def embed_text(self, text: str, task_type: str = "retrieval_document") -> List[float]:
        """Generate embedding for text using thread executor to avoid blocking."""
        if not text.strip():
            raise ValueError("Cannot embed empty text")

        start = time.time()
        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(
                None,
                partial(
                    genai.embed_content,
                    model=self.model,
                    content=text,
                    task_type=task_type
                )
            )
        except Exception:
            embedding_generation_total.labels(status="failed").inc()
            raise
        finally:
            embedding_generation_duration.observe(time.time() - start)

        embedding = result["embedding"]
        if not embedding:
            embedding_generation_total.labels(status="failed").inc()
            raise ValueError("Empty embedding generated")

        embedding_generation_total.labels(status="success").inc()
        return embedding
