from .auth_api import AuthAPI
from .chat_api import ChatAPI
from .contact_api import ContactAPI
from .realtime_api import RealtimeAPI

__all__ = ["AuthAPI", "ChatAPI", "ContactAPI", "RealtimeAPI"]
