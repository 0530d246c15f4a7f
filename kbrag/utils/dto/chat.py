from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    question: str = Field(..., description="Natural-language question", min_length=1, max_length=4000)


class ChatResponse(BaseModel):
    answer: str = Field(..., description="Generated or cached answer")
    cached: bool = Field(False, description="Whether the answer came from the cache")
