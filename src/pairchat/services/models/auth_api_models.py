from pydantic import BaseModel

class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    is_online: bool
    blocked_user_ids: list[int] = []

    class Config:
        from_attributes = True

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str
    redis: str
    database: str
