from pydantic import BaseModel
from datetime import datetime

class UserDTO(BaseModel):
    id: int
    username: str
    email: str
    is_online: bool = False

class ContactDTO(UserDTO):
    is_blocked: bool = False
    added_at: datetime | None = None

class ConversationDTO(BaseModel):
    id: int
    is_group: bool = False
    participant_ids: tuple[int, int]
    latest_message_id: int | None = None
    created_at: datetime

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def counterparty_of(self, user_id: int) -> int:
        low, high = self.participant_ids
        return high if user_id == low else low

class MessageDTO(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str | None = None
    attachment: str | None = None
    seen: bool = False
    created_at: datetime

class ConversationHistoryDTO(BaseModel):
    conversation: ConversationDTO
    messages: list[MessageDTO] = []
    created: bool = False

class UnseenSummaryDTO(BaseModel):
    conversation_id: int
    unseen_count: int
    counterparty_id: int
    latest_message: MessageDTO | None = None
