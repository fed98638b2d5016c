from pydantic import BaseModel, Field
from typing import Optional, List, Literal


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class InlineFile(BaseModel):
    data: str  # base64
    mime_type: str
    name: Optional[str] = None


class ChatRequest(BaseModel):
    message: str
    history: List[ChatMessage] = Field(default_factory=list)
    file: Optional[InlineFile] = None
    project_id: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    model: str
