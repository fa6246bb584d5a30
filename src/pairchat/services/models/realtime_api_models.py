from pydantic import BaseModel, Field
from typing import Any


class SocketFrame(BaseModel):
    event: str = Field(..., min_length=1)
    data: dict[str, Any] = {}

class AnnounceData(BaseModel):
    user_id: int | None = None

class ConversationData(BaseModel):
    conversation_id: int

class MessageSentData(ConversationData):
    content: str | None = None
