from .exceptions import (
    ChatError,
    NotFoundError,
    InvalidOperationError,
    ForbiddenError,
    UnauthorizedError,
    InternalError,
)
