from fastapi import APIRouter, HTTPException, status, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from dishka.integrations.fastapi import inject
from dishka import FromDishka
from pathlib import Path
import asyncio
import logging
import re
import uuid

from .models.chat_api_models import *
from pairchat.config import UploadConfig
from pairchat.core.broadcaster import DeliveryBroadcaster, MESSAGE_DELIVERED, MESSAGE_DELETED
from pairchat.core.exceptions import InvalidOperationError, ForbiddenError, NotFoundError
from pairchat.core.gateways import ConversationGateway, MessageGateway
from .auth_api import AuthAPI

_SUFFIX_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


class ChatAPI:
    """
    Main class for conversation and message endpoints.

    Resolves the canonical conversation between two users, stores messages
    (text and/or one attachment), and exposes clear, unseen and mark-seen
    operations. Every stored message is published to the conversation's
    live subscribers.

    Attributes:
        logger: Logger instance for tracking operations
        auth_api: Authentication API instance for user validation
        upload_config: Where and how large attachments may be stored
        chat_router: FastAPI router containing chat endpoints
    """

    def __init__(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI,
            upload_config: UploadConfig
    ):
        self.logger = logger
        self.auth_api = auth_api
        self.upload_config = upload_config

        self._chat_router = APIRouter(prefix="/chats", tags=["Chats"])
        self._register_endpoints()

    @property
    def chat_router(self) -> APIRouter:
        return self._chat_router

    def get_router(self) -> APIRouter:
        return self._chat_router

    async def store_attachment(self, upload: UploadFile) -> str:
        """
        Persist an uploaded file under a random name.

        Args:
            upload: Incoming multipart file

        Returns:
            Attachment reference (the stored file name)

        Raises:
            InvalidOperationError: If the file is empty
            HTTPException: 413 if the file exceeds the configured limit
        """
        data = await upload.read(self.upload_config.max_bytes + 1)
        if not data:
            raise InvalidOperationError("Attachment is empty")
        if len(data) > self.upload_config.max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail="Attachment too large"
            )

        suffix = Path(upload.filename or "").suffix
        if not _SUFFIX_RE.match(suffix):
            suffix = ""
        reference = f"{uuid.uuid4().hex}{suffix.lower()}"

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_attachment, reference, data)
        return reference

    def _write_attachment(self, reference: str, data: bytes) -> None:
        directory = Path(self.upload_config.path)
        directory.mkdir(parents=True, exist_ok=True)
        (directory / reference).write_bytes(data)

    def _remove_attachment(self, reference: str) -> None:
        (Path(self.upload_config.path) / reference).unlink(missing_ok=True)

    def _register_endpoints(self):
        @self.chat_router.post("/resolve", response_model=ResolveChatResponse)
        @inject
        async def resolve_chat(
                request_data: ResolveChatRequest,
                conversation_gateway: FromDishka[ConversationGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            Get or create the conversation with another user.

            Returns:
                Conversation ID and the history visible to the caller, oldest first
            """
            user_id = await self.auth_api.get_current_user(token)

            history = await conversation_gateway.resolve(user_id, request_data.counterparty_id)

            return ResolveChatResponse(
                conversation_id=history.conversation.id,
                messages=[MessageResponse.model_validate(m) for m in history.messages]
            )

        @self.chat_router.post("/send", status_code=status.HTTP_201_CREATED, response_model=SendMessageResponse)
        @inject
        async def send_message(
                message_gateway: FromDishka[MessageGateway],
                conversation_gateway: FromDishka[ConversationGateway],
                broadcaster: FromDishka[DeliveryBroadcaster],
                conversation_id: int = Form(...),
                content: str | None = Form(None),
                attachment: UploadFile | None = File(None),
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            Send a message with text, an attachment, or both.

            Raises:
                InvalidOperationError: If neither text nor attachment is given
                NotFoundError: If the conversation does not exist
                ForbiddenError: If the caller is not a participant or is blocked
            """
            sender_id = await self.auth_api.get_current_user(token)

            has_text = bool(content and content.strip())
            if attachment is not None and attachment.size == 0 and has_text:
                # an empty file field next to text is not an attachment
                attachment = None

            if not has_text and attachment is None:
                raise InvalidOperationError("Message must have text or attachment")

            reference = None
            if attachment is not None:
                conversation = await conversation_gateway.get_conversation(conversation_id)
                if conversation is None:
                    raise NotFoundError("Chat not found")
                if not conversation.has_participant(sender_id):
                    raise ForbiddenError("You are not a member of this chat")
                reference = await self.store_attachment(attachment)

            try:
                message = await message_gateway.append(
                    conversation_id=conversation_id,
                    sender_id=sender_id,
                    content=content,
                    attachment=reference
                )
            except Exception:
                if reference is not None:
                    await asyncio.get_running_loop().run_in_executor(None, self._remove_attachment, reference)
                raise

            response = MessageResponse.model_validate(message)
            await broadcaster.publish(
                conversation_id,
                MESSAGE_DELIVERED,
                {"message": response.model_dump(mode="json")},
                exclude_user_id=sender_id
            )
            return SendMessageResponse(message=response)

        @self.chat_router.post("/clear", response_model=StatusResponse)
        @inject
        async def clear_chat(
                request_data: ConversationRequest,
                conversation_gateway: FromDishka[ConversationGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            user_id = await self.auth_api.get_current_user(token)
            await conversation_gateway.clear(request_data.conversation_id, user_id)
            return StatusResponse(status="chat cleared")

        @self.chat_router.get("/unseen", response_model=UnseenMessagesResponse)
        @inject
        async def get_unseen_messages(
                message_gateway: FromDishka[MessageGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            List conversations holding messages the caller has not seen yet.
            """
            user_id = await self.auth_api.get_current_user(token)
            summaries = await message_gateway.unseen_for(user_id)
            return UnseenMessagesResponse(
                unseen_messages=[UnseenSummaryResponse.model_validate(s) for s in summaries]
            )

        @self.chat_router.post("/mark-seen", response_model=MarkSeenResponse)
        @inject
        async def mark_messages_seen(
                request_data: ConversationRequest,
                message_gateway: FromDishka[MessageGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            user_id = await self.auth_api.get_current_user(token)
            updated = await message_gateway.mark_seen(request_data.conversation_id, user_id)
            return MarkSeenResponse(status="messages marked as seen", updated=updated)

        @self.chat_router.delete("/{conversation_id}/messages/{message_id}", response_model=StatusResponse)
        @inject
        async def delete_message(
                conversation_id: int,
                message_id: int,
                message_gateway: FromDishka[MessageGateway],
                broadcaster: FromDishka[DeliveryBroadcaster],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            Permanently delete one of the caller's own messages.

            Raises:
                NotFoundError: If the message is not part of the conversation
                ForbiddenError: If the caller did not send the message
            """
            user_id = await self.auth_api.get_current_user(token)
            await message_gateway.delete_by_id(message_id, conversation_id, user_id)

            await broadcaster.publish(
                conversation_id,
                MESSAGE_DELETED,
                {"conversation_id": conversation_id, "message_id": message_id},
                exclude_user_id=user_id
            )
            return StatusResponse(status="message deleted")

        @self.chat_router.get("/attachments/{reference}")
        @inject
        async def get_attachment(
                reference: str,
                message_gateway: FromDishka[MessageGateway],
                conversation_gateway: FromDishka[ConversationGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            Download an attachment. Only the conversation's participants may read it.
            """
            user_id = await self.auth_api.get_current_user(token)

            message = await message_gateway.get_message_by_attachment(reference)
            if message is None:
                raise NotFoundError("Attachment not found")

            conversation = await conversation_gateway.get_conversation(message.conversation_id)
            if conversation is None or not conversation.has_participant(user_id):
                raise ForbiddenError("You are not a member of this chat")

            path = Path(self.upload_config.path) / reference
            if not path.is_file():
                self.logger.warning("Attachment %s is referenced but missing on disk", reference)
                raise NotFoundError("Attachment not found")
            return FileResponse(path)
