import asyncio
import time
from typing import Protocol

import google.generativeai as genai

from kbrag.core.config import settings
from kbrag.utils.logger import get_logger
from kbrag.utils.metrics import llm_generation_duration

logger = get_logger("services.llm_service")


class LanguageModel(Protocol):
    async def generate(self, prompt: str) -> str: ...


class GeminiChatService:
    """Single-shot text generation."""

    def __init__(self, model: str = None, api_key: str = None):
        api_key = api_key or settings.GEMINI_API_KEY
        if not api_key:
            raise ValueError("Missing GEMINI_API_KEY in environment")
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model or settings.CHAT_MODEL)

    async def generate(self, prompt: str) -> str:
        start = time.time()
        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(None, self.model.generate_content, prompt)
        finally:
            llm_generation_duration.observe(time.time() - start)
        logger.debug(f"LLM responded in {time.time() - start:.2f}s")
        return response.text
