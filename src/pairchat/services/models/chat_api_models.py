from pydantic import BaseModel, Field
from datetime import datetime

class ResolveChatRequest(BaseModel):
    counterparty_id: int

class ConversationRequest(BaseModel):
    conversation_id: int

class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str | None = None
    attachment: str | None = None
    seen: bool
    created_at: datetime

    class Config:
        from_attributes = True

class ResolveChatResponse(BaseModel):
    conversation_id: int
    messages: list[MessageResponse] = []

class SendMessageResponse(BaseModel):
    status: str = "sent"
    message: MessageResponse

class UnseenSummaryResponse(BaseModel):
    conversation_id: int
    unseen_count: int = Field(..., ge=1)
    counterparty_id: int
    latest_message: MessageResponse | None = None

    class Config:
        from_attributes = True

class UnseenMessagesResponse(BaseModel):
    unseen_messages: list[UnseenSummaryResponse] = []

class MarkSeenResponse(BaseModel):
    status: str
    updated: int

class StatusResponse(BaseModel):
    status: str
