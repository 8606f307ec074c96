"""
Chat-related Pydantic models
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictStr

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """One conversation message; immutable once built."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: StrictStr = Field(min_length=1)


class ChatRequest(BaseModel):
    """Request body for both chat endpoints"""
    model_config = ConfigDict(frozen=True)

    messages: List[ChatMessage] = Field(min_length=1)
    model: Optional[StrictStr] = None
    temperature: Optional[StrictFloat] = Field(default=None, ge=0, le=2)
    stream: Optional[StrictBool] = None


class Usage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ChatResult(BaseModel):
    """Response body of the non-streaming endpoint"""
    id: str
    created: int
    model: str
    content: str
    usage: Optional[Usage] = None


class ErrorDetail(BaseModel):
    message: str


class ErrorBody(BaseModel):
    """Unified error payload: HTTP 400 body and the streaming failure frame"""
    error: ErrorDetail

    @classmethod
    def of(cls, message: str) -> "ErrorBody":
        return cls(error=ErrorDetail(message=message))
