import enum
import hashlib
import json
from dataclasses import dataclass
from typing import Iterable

from kbrag.core.config import settings
from kbrag.core.context import RequestContext
from kbrag.services.cache_manager import CacheManager
from kbrag.services.llm_service import LanguageModel
from kbrag.services.search_service import VectorSearchService
from kbrag.utils.logger import get_logger
from kbrag.utils.metrics import chat_cache_requests

logger = get_logger("services.chat_service")

CACHE_MODULE = "chat"

UNAUTHORIZED_ANSWER = "User is not logged in or has no permission."
NO_CONTENT_ANSWER = "No relevant content was found."

RAG_PROMPT_TEMPLATE = """You are a professional enterprise knowledge assistant.
Answer the [Question] using only the [Reference material] below.
If the [Reference material] does not contain the answer, reply exactly "I don't know" and do not make anything up.

[Reference material]:
{context}

[Question]:
{question}
"""


class ChatStatus(str, enum.Enum):
    ANSWERED = "answered"
    CACHED = "cached"
    NO_CONTENT = "no_content"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class ChatResult:
    answer: str
    status: ChatStatus


def role_fingerprint(roles: Iterable[str]) -> str:
    """MD5 of the sorted, de-duplicated role set; order of `roles` does not matter."""
    canonical = json.dumps(sorted(set(roles)), ensure_ascii=False, separators=(",", ":"))
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def question_fingerprint(question: str) -> str:
    return hashlib.sha256(question.encode("utf-8")).hexdigest()


def chat_cache_key(roles: Iterable[str], question: str) -> str:
    return CacheManager.generate_key(CACHE_MODULE, role_fingerprint(roles), question_fingerprint(question))


def build_prompt(question: str, contexts: Iterable[str]) -> str:
    return RAG_PROMPT_TEMPLATE.format(context="\n\n".join(contexts), question=question)


class ChatService:
    """Answers questions from the caller's permitted documents, caching per role set."""

    def __init__(
        self,
        cache: CacheManager,
        search_service: VectorSearchService,
        llm: LanguageModel,
        cache_ttl: int = None,
    ):
        self.cache = cache
        self.search_service = search_service
        self.llm = llm
        self.cache_ttl = cache_ttl or settings.CACHE_TTL_SECONDS

    async def chat(self, ctx: RequestContext, question: str) -> ChatResult:
        if not ctx.roles:
            logger.warning(f"Chat rejected: user {ctx.user_id} has no roles")
            return ChatResult(UNAUTHORIZED_ANSWER, ChatStatus.UNAUTHORIZED)

        cache_key = chat_cache_key(ctx.roles, question)
        logger.debug(f"Chat cache key: {cache_key}")

        cached = await self.cache.get(cache_key)
        if cached is not None:
            chat_cache_requests.labels(result="hit").inc()
            logger.info(f"Cache hit, key={cache_key}")
            return ChatResult(cached, ChatStatus.CACHED)
        chat_cache_requests.labels(result="miss").inc()

        contexts = await self.search_service.search(question, ctx.roles)
        if not contexts:
            logger.info(f"No chunks visible to user {ctx.user_id} for this question")
            return ChatResult(NO_CONTENT_ANSWER, ChatStatus.NO_CONTENT)

        answer = await self.llm.generate(build_prompt(question, contexts))
        logger.info(f"LLM answered from {len(contexts)} chunks")

        await self.cache.put(cache_key, answer, self.cache_ttl)
        return ChatResult(answer, ChatStatus.ANSWERED)
