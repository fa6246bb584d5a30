from pydantic import BaseModel, Field
from datetime import datetime


class AddContactRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)

class ContactResponse(BaseModel):
    id: int
    username: str
    email: str
    is_online: bool
    is_blocked: bool
    added_at: datetime | None = None

    class Config:
        from_attributes = True
