from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Any, Awaitable, Callable
import asyncio
import json
import logging

from .models.realtime_api_models import *
from .models.chat_api_models import MessageResponse
from pairchat.core.broadcaster import (
    Connection,
    DeliveryBroadcaster,
    MESSAGE_DELIVERED,
    TYPING_INDICATOR,
)
from pairchat.core.db_manager import DatabaseManager
from pairchat.core.exceptions import ChatError, ForbiddenError, InvalidOperationError, NotFoundError, UnauthorizedError
from pairchat.core.gateways import ConversationGateway, MessageGateway, UserGateway
from pairchat.core.presence import PresenceRegistry
from .auth_api import AuthAPI

# close code for a rejected token, in the private 4000-4999 range
WS_CLOSE_UNAUTHORIZED = 4401


class SocketSession:
    """
    Per-connection state for the chat socket: the connection itself plus
    the gateways and registries its events need.
    """

    def __init__(
            self,
            connection: Connection,
            broadcaster: DeliveryBroadcaster,
            presence: PresenceRegistry,
            db_manager: DatabaseManager,
            logger: logging.Logger
    ):
        self.connection = connection
        self.broadcaster = broadcaster
        self.presence = presence
        self.conversation_gateway = ConversationGateway(db_manager, logger)
        self.message_gateway = MessageGateway(db_manager, logger)
        self.user_gateway = UserGateway(db_manager, logger)

    @property
    def user_id(self) -> int:
        return self.connection.user_id


class RealtimeAPI:
    """
    WebSocket endpoint carrying presence, typing and message delivery.

    Clients connect to ``/ws?token=<jwt>`` and exchange JSON frames of the form
    ``{"event": <name>, "data": {...}}``. Inbound events:

    - ``announce-online``: counts the connection towards the user's presence
    - ``join-conversation``: subscribes to a conversation (participants only)
    - ``leave-conversation``: unsubscribes
    - ``typing``: relayed to the other participant as ``typing-indicator``
    - ``message-sent``: stored and delivered as ``message-delivered``

    A failing event is answered with an ``error`` frame on the same socket;
    the connection stays open.

    Attributes:
        logger: Logger instance for tracking operations
        auth_api: Authentication API instance for token validation
        typing_timeout: Seconds a receiver should keep a typing indicator
    """

    def __init__(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI,
            typing_timeout: int = 3
    ):
        self.logger = logger
        self.auth_api = auth_api
        self.typing_timeout = typing_timeout

        self._handlers: dict[str, Callable[[SocketSession, dict[str, Any]], Awaitable[None]]] = {
            "announce-online": self._on_announce_online,
            "join-conversation": self._on_join_conversation,
            "leave-conversation": self._on_leave_conversation,
            "typing": self._on_typing,
            "message-sent": self._on_message_sent,
        }

        self._realtime_router = APIRouter(tags=["Realtime"])
        self._register_endpoints()

    @property
    def realtime_router(self) -> APIRouter:
        return self._realtime_router

    def get_router(self) -> APIRouter:
        return self._realtime_router

    def _register_endpoints(self):
        @self.realtime_router.websocket("/ws")
        async def chat_socket(websocket: WebSocket, token: str | None = None):
            try:
                user_id = self.auth_api.decode_token(token)
            except UnauthorizedError as e:
                self.logger.warning("Rejected socket: %s", e.message)
                await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason=e.message)
                return

            container = websocket.app.state.dishka_container
            broadcaster = await container.get(DeliveryBroadcaster)
            presence = await container.get(PresenceRegistry)
            db_manager = await container.get(DatabaseManager)

            connection = Connection(websocket, user_id)
            session = SocketSession(connection, broadcaster, presence, db_manager, self.logger)

            await websocket.accept()
            broadcaster.register(connection)
            self.logger.debug("Socket %s opened", connection)

            try:
                while True:
                    raw = await websocket.receive_text()
                    await self.handle_frame(session, raw)
            except WebSocketDisconnect:
                pass
            finally:
                broadcaster.unregister(connection)
                if connection.announced:
                    # must finish even when the socket task is being cancelled
                    try:
                        await asyncio.shield(presence.connection_closed(user_id))
                    except ChatError as e:
                        self.logger.warning("Presence release failed for %s: %s", connection, e.message)
                self.logger.debug("Socket %s closed", connection)

    async def handle_frame(self, session: SocketSession, raw: str) -> None:
        try:
            frame = SocketFrame.model_validate(json.loads(raw))
            handler = self._handlers.get(frame.event)
            if handler is None:
                raise InvalidOperationError(f"Unknown event: {frame.event}")
            await handler(session, frame.data)
        except (ValueError, ValidationError) as e:
            self.logger.warning("Malformed frame from %s: %s", session.connection, e)
            await self._send_error(session, InvalidOperationError("Malformed event"))
        except ChatError as e:
            self.logger.warning("Event rejected for %s: %s", session.connection, e.message)
            await self._send_error(session, e)

    async def _send_error(self, session: SocketSession, error: ChatError) -> None:
        await session.connection.send("error", {"status": error.status_code, "detail": error.message})

    async def _joined_conversation(self, session: SocketSession, conversation_id: int):
        conversation = await session.conversation_gateway.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Chat not found")
        if not conversation.has_participant(session.user_id):
            raise ForbiddenError("You are not a member of this chat")
        return conversation

    async def _on_announce_online(self, session: SocketSession, data: dict[str, Any]) -> None:
        payload = AnnounceData.model_validate(data)
        if payload.user_id is not None and payload.user_id != session.user_id:
            raise ForbiddenError("Cannot announce another user")
        if session.connection.announced:
            return
        await session.presence.connection_opened(session.user_id)
        session.connection.announced = True

    async def _on_join_conversation(self, session: SocketSession, data: dict[str, Any]) -> None:
        payload = ConversationData.model_validate(data)
        await self._joined_conversation(session, payload.conversation_id)
        session.broadcaster.subscribe(session.connection, payload.conversation_id)
        await session.connection.send("joined", {"conversation_id": payload.conversation_id})

    async def _on_leave_conversation(self, session: SocketSession, data: dict[str, Any]) -> None:
        payload = ConversationData.model_validate(data)
        session.broadcaster.unsubscribe(session.connection, payload.conversation_id)

    async def _on_typing(self, session: SocketSession, data: dict[str, Any]) -> None:
        payload = ConversationData.model_validate(data)
        if payload.conversation_id not in session.connection.conversations:
            raise ForbiddenError("Join the conversation first")

        conversation = await self._joined_conversation(session, payload.conversation_id)
        counterparty_id = conversation.counterparty_of(session.user_id)
        if await session.user_gateway.is_blocked_between(session.user_id, counterparty_id):
            raise ForbiddenError("Messaging is blocked between these users")

        await session.broadcaster.publish(
            payload.conversation_id,
            TYPING_INDICATOR,
            {
                "conversation_id": payload.conversation_id,
                "user_id": session.user_id,
                "expires_in": self.typing_timeout,
            },
            exclude_user_id=session.user_id
        )

    async def _on_message_sent(self, session: SocketSession, data: dict[str, Any]) -> None:
        payload = MessageSentData.model_validate(data)
        message = await session.message_gateway.append(
            conversation_id=payload.conversation_id,
            sender_id=session.user_id,
            content=payload.content
        )

        body = {"message": MessageResponse.model_validate(message).model_dump(mode="json")}
        await session.broadcaster.publish(
            payload.conversation_id,
            MESSAGE_DELIVERED,
            body,
            exclude_user_id=session.user_id
        )
        await session.connection.send("message-sent", body)
