class ChatError(Exception):
    """
    Base class for errors surfaced to callers of the chat core.

    Each subclass carries the HTTP status it maps to; the message is short
    and safe to show to the client.
    """
    status_code: int = 500
    default_message: str = "Chat error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ChatError):
    status_code = 404
    default_message = "Not found"


class InvalidOperationError(ChatError):
    status_code = 400
    default_message = "Invalid operation"


class ForbiddenError(ChatError):
    status_code = 403
    default_message = "Forbidden"


class UnauthorizedError(ChatError):
    status_code = 401
    default_message = "Unauthorized"


class InternalError(ChatError):
    status_code = 500
    default_message = "Internal server error"
