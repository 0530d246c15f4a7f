from fastapi import APIRouter, Depends, HTTPException

from kbrag.api.deps import get_chat_service
from kbrag.core.auth import get_request_context
from kbrag.core.context import RequestContext
from kbrag.services.chat_service import ChatService, ChatStatus
from kbrag.utils.dto.chat import ChatRequest, ChatResponse

router = APIRouter()


@router.post("/", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ChatService = Depends(get_chat_service),
):
    """
    Answer a question from the documents visible to the caller's roles.
    """
    if ctx.user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=422, detail="Question must not be empty")

    result = await service.chat(ctx, question)
    if result.status is ChatStatus.UNAUTHORIZED:
        raise HTTPException(status_code=403, detail=result.answer)

    return ChatResponse(answer=result.answer, cached=result.status is ChatStatus.CACHED)
