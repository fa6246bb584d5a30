from sqlalchemy import select, insert, update, delete, func, or_, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from functools import wraps
import asyncio
import logging

from .database import User, Contact, Block, Conversation, ConversationClear, Message, utcnow
from .interfaces import UserInterface, ConversationInterface, MessageInterface
from .dto import (
    UserDTO,
    ContactDTO,
    ConversationDTO,
    ConversationHistoryDTO,
    MessageDTO,
    UnseenSummaryDTO,
)
from .exceptions import NotFoundError, InvalidOperationError, ForbiddenError, InternalError
from .db_manager import DatabaseManager


def handle_db_errors(action: str):
    """
    Turns persistence failures into InternalError after logging them.
    Domain errors raised by the wrapped method pass through untouched.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except (SQLAlchemyError, asyncio.TimeoutError, OSError) as e:
                self._logger.error("Error %s in database: %s", action, e)
                raise InternalError() from e
        return wrapper
    return decorator


def _user_dto(user: User) -> UserDTO:
    return UserDTO(
        id=user.id,
        username=user.username,
        email=user.email,
        is_online=user.is_online
    )

def _conversation_dto(conversation: Conversation) -> ConversationDTO:
    return ConversationDTO(
        id=conversation.id,
        is_group=conversation.is_group,
        participant_ids=(conversation.user_low_id, conversation.user_high_id),
        latest_message_id=conversation.latest_message_id,
        created_at=conversation.created_at
    )

def _message_dto(msg: Message) -> MessageDTO:
    return MessageDTO(
        id=msg.id,
        conversation_id=msg.conversation_id,
        sender_id=msg.sender_id,
        content=msg.content,
        attachment=msg.attachment,
        seen=msg.seen,
        created_at=msg.created_at
    )

def normalize_pair(user_a: int, user_b: int) -> tuple[int, int]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)

async def _blocked_between(session: AsyncSession, user_a: int, user_b: int) -> bool:
    stmt = select(Block.id).where(
        or_(
            and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
            and_(Block.blocker_id == user_b, Block.blocked_id == user_a)
        )
    ).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None

async def _load_conversation(session: AsyncSession, conversation_id: int, user_id: int) -> Conversation:
    conversation = await session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Chat not found")
    if user_id not in (conversation.user_low_id, conversation.user_high_id):
        raise ForbiddenError("You are not a member of this chat")
    return conversation


class UserGateway(UserInterface):
    __slots__ = ("_db_manager", "_logger")

    def __init__(self, db_manager: DatabaseManager, logger: logging.Logger | None = None):
        self._db_manager = db_manager
        self._logger = logger or logging.getLogger(__name__)

    @handle_db_errors("creating user")
    async def create_user(self, username: str, email: str) -> UserDTO:
        async with self._db_manager.session() as session:
            stmt = insert(User).values(
                username=username,
                email=email
            ).returning(User)
            result = await session.execute(stmt)
            return _user_dto(result.scalars().first())

    @handle_db_errors("getting user by id")
    async def get_user_by_id(self, user_id: int) -> UserDTO | None:
        async with self._db_manager.session() as session:
            user = await session.get(User, user_id)
            return _user_dto(user) if user else None

    @handle_db_errors("getting user by email")
    async def get_user_by_email(self, email: str) -> UserDTO | None:
        async with self._db_manager.session() as session:
            stmt = select(User).where(User.email == email)
            result = await session.execute(stmt)
            user = result.scalars().first()
            return _user_dto(user) if user else None

    @handle_db_errors("updating presence")
    async def set_online(self, user_id: int, online: bool) -> bool:
        async with self._db_manager.session() as session:
            stmt = update(User).where(
                User.id == user_id
            ).values(is_online=online)
            result = await session.execute(stmt)
            return result.rowcount > 0

    @handle_db_errors("resetting presence")
    async def set_all_offline(self) -> int:
        async with self._db_manager.session() as session:
            stmt = update(User).where(
                User.is_online == True
            ).values(is_online=False)
            result = await session.execute(stmt)
            return result.rowcount

    @handle_db_errors("getting contacts")
    async def get_contacts(self, owner_id: int) -> list[ContactDTO]:
        async with self._db_manager.session() as session:
            stmt = select(User, Contact.added_at).join(
                Contact, Contact.contact_id == User.id
            ).where(
                Contact.owner_id == owner_id
            ).order_by(Contact.added_at, Contact.id)
            rows = (await session.execute(stmt)).all()

            blocked_stmt = select(Block.blocked_id).where(Block.blocker_id == owner_id)
            blocked = set((await session.execute(blocked_stmt)).scalars().all())

            return [
                ContactDTO(
                    id=user.id,
                    username=user.username,
                    email=user.email,
                    is_online=user.is_online,
                    is_blocked=user.id in blocked,
                    added_at=added_at
                ) for user, added_at in rows
            ]

    @handle_db_errors("checking contact")
    async def has_contact(self, owner_id: int, contact_id: int) -> bool:
        async with self._db_manager.session() as session:
            stmt = select(Contact.id).where(
                Contact.owner_id == owner_id,
                Contact.contact_id == contact_id
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    @handle_db_errors("adding contact")
    async def add_contact(self, owner_id: int, contact_id: int) -> bool:
        try:
            async with self._db_manager.session() as session:
                stmt = insert(Contact).values(
                    owner_id=owner_id,
                    contact_id=contact_id
                )
                await session.execute(stmt)
                return True
        except IntegrityError:
            return False

    @handle_db_errors("deleting contact")
    async def delete_contact(self, owner_id: int, contact_id: int) -> bool:
        async with self._db_manager.session() as session:
            stmt = delete(Contact).where(
                Contact.owner_id == owner_id,
                Contact.contact_id == contact_id
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

    @handle_db_errors("blocking user")
    async def block_user(self, blocker_id: int, blocked_id: int) -> bool:
        try:
            async with self._db_manager.session() as session:
                stmt = insert(Block).values(
                    blocker_id=blocker_id,
                    blocked_id=blocked_id
                )
                await session.execute(stmt)
                return True
        except IntegrityError:
            return False

    @handle_db_errors("unblocking user")
    async def unblock_user(self, blocker_id: int, blocked_id: int) -> bool:
        async with self._db_manager.session() as session:
            stmt = delete(Block).where(
                Block.blocker_id == blocker_id,
                Block.blocked_id == blocked_id
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

    @handle_db_errors("getting blocked users")
    async def get_blocked_ids(self, blocker_id: int) -> list[int]:
        async with self._db_manager.session() as session:
            stmt = select(Block.blocked_id).where(
                Block.blocker_id == blocker_id
            ).order_by(Block.id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @handle_db_errors("checking block")
    async def is_blocked_between(self, user_a: int, user_b: int) -> bool:
        async with self._db_manager.session() as session:
            return await _blocked_between(session, user_a, user_b)


class ConversationGateway(ConversationInterface):
    __slots__ = ("_db_manager", "_logger")

    def __init__(self, db_manager: DatabaseManager, logger: logging.Logger | None = None):
        self._db_manager = db_manager
        self._logger = logger or logging.getLogger(__name__)

    @handle_db_errors("resolving conversation")
    async def resolve(self, user_id: int, counterparty_id: int) -> ConversationHistoryDTO:
        if user_id == counterparty_id:
            raise InvalidOperationError("Cannot open a chat with yourself")

        async with self._db_manager.session() as session:
            stmt = select(User.id).where(User.id.in_([user_id, counterparty_id]))
            existing = set((await session.execute(stmt)).scalars().all())

        if user_id not in existing:
            raise NotFoundError("User not found")
        if counterparty_id not in existing:
            raise NotFoundError("Receiver not found")

        low, high = normalize_pair(user_id, counterparty_id)
        conversation = await self._find_by_pair(low, high)
        if conversation is not None:
            messages = await self._visible_history(conversation.id, user_id)
            return ConversationHistoryDTO(conversation=conversation, messages=messages)

        try:
            async with self._db_manager.session() as session:
                stmt = insert(Conversation).values(
                    is_group=False,
                    user_low_id=low,
                    user_high_id=high
                ).returning(Conversation)
                result = await session.execute(stmt)
                conversation = _conversation_dto(result.scalars().first())
        except IntegrityError:
            # the other participant created it between our read and insert
            self._logger.debug("Conversation %s:%s created concurrently, re-reading", low, high)
            conversation = await self._find_by_pair(low, high)
            if conversation is None:
                raise InternalError()
            messages = await self._visible_history(conversation.id, user_id)
            return ConversationHistoryDTO(conversation=conversation, messages=messages)

        self._logger.info("Conversation %s created between %s and %s", conversation.id, low, high)
        return ConversationHistoryDTO(conversation=conversation, messages=[], created=True)

    @handle_db_errors("getting conversation")
    async def get_conversation(self, conversation_id: int) -> ConversationDTO | None:
        async with self._db_manager.session() as session:
            conversation = await session.get(Conversation, conversation_id)
            return _conversation_dto(conversation) if conversation else None

    @handle_db_errors("clearing conversation")
    async def clear(self, conversation_id: int, user_id: int) -> None:
        async with self._db_manager.session() as session:
            await _load_conversation(session, conversation_id, user_id)

            newest_stmt = select(func.max(Message.id)).where(Message.conversation_id == conversation_id)
            cleared_through = (await session.execute(newest_stmt)).scalar() or 0

            existing_stmt = select(ConversationClear.id).where(
                ConversationClear.conversation_id == conversation_id,
                ConversationClear.user_id == user_id
            )
            existing = (await session.execute(existing_stmt)).scalar_one_or_none()

            if existing is None:
                stmt = insert(ConversationClear).values(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    cleared_through_id=cleared_through
                )
            else:
                stmt = update(ConversationClear).where(
                    ConversationClear.id == existing
                ).values(cleared_through_id=cleared_through, cleared_at=utcnow())
            await session.execute(stmt)

        self._logger.info("Conversation %s cleared by user %s", conversation_id, user_id)

    async def _find_by_pair(self, low: int, high: int) -> ConversationDTO | None:
        async with self._db_manager.session() as session:
            stmt = select(Conversation).where(
                Conversation.is_group == False,
                Conversation.user_low_id == low,
                Conversation.user_high_id == high
            )
            result = await session.execute(stmt)
            conversation = result.scalars().first()
            return _conversation_dto(conversation) if conversation else None

    async def _visible_history(self, conversation_id: int, user_id: int) -> list[MessageDTO]:
        async with self._db_manager.session() as session:
            marker_stmt = select(ConversationClear.cleared_through_id).where(
                ConversationClear.conversation_id == conversation_id,
                ConversationClear.user_id == user_id
            )
            cleared_through = (await session.execute(marker_stmt)).scalar_one_or_none()

            stmt = select(Message).where(Message.conversation_id == conversation_id)
            if cleared_through is not None:
                stmt = stmt.where(Message.id > cleared_through)
            stmt = stmt.order_by(Message.created_at, Message.id)

            result = await session.execute(stmt)
            return [_message_dto(m) for m in result.scalars().all()]


class MessageGateway(MessageInterface):
    __slots__ = ("_db_manager", "_logger")

    def __init__(self, db_manager: DatabaseManager, logger: logging.Logger | None = None):
        self._db_manager = db_manager
        self._logger = logger or logging.getLogger(__name__)

    @handle_db_errors("creating message")
    async def append(
            self,
            conversation_id: int,
            sender_id: int,
            content: str | None = None,
            attachment: str | None = None
    ) -> MessageDTO:
        content = content.strip() if content else None
        if not content and not attachment:
            raise InvalidOperationError("Message must have text or attachment")

        async with self._db_manager.session() as session:
            conversation = await _load_conversation(session, conversation_id, sender_id)

            counterparty_id = (
                conversation.user_high_id
                if sender_id == conversation.user_low_id
                else conversation.user_low_id
            )
            if await _blocked_between(session, sender_id, counterparty_id):
                raise ForbiddenError("Messaging is blocked between these users")

            stmt = insert(Message).values(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content or None,
                attachment=attachment or None
            ).returning(Message)
            result = await session.execute(stmt)
            msg = _message_dto(result.scalars().first())

            await session.execute(
                update(Conversation).where(
                    Conversation.id == conversation_id
                ).values(latest_message_id=msg.id)
            )

        self._logger.info("Message %s sent to conversation %s by user %s", msg.id, conversation_id, sender_id)
        return msg

    @handle_db_errors("deleting message")
    async def delete_by_id(self, message_id: int, conversation_id: int, requester_id: int) -> MessageDTO:
        async with self._db_manager.session() as session:
            stmt = select(Message).where(
                Message.id == message_id,
                Message.conversation_id == conversation_id
            )
            msg = (await session.execute(stmt)).scalars().first()
            if msg is None:
                raise NotFoundError("Message not found")
            if msg.sender_id != requester_id:
                raise ForbiddenError("Only the sender can delete this message")

            deleted = _message_dto(msg)
            await session.execute(delete(Message).where(Message.id == message_id))

            conversation = await session.get(Conversation, conversation_id)
            if conversation is not None and conversation.latest_message_id == message_id:
                newest_stmt = select(Message.id).where(
                    Message.conversation_id == conversation_id
                ).order_by(Message.id.desc()).limit(1)
                newest = (await session.execute(newest_stmt)).scalar_one_or_none()
                await session.execute(
                    update(Conversation).where(
                        Conversation.id == conversation_id
                    ).values(latest_message_id=newest)
                )

        self._logger.info("Message %s deleted from conversation %s", message_id, conversation_id)
        return deleted

    @handle_db_errors("getting message by attachment")
    async def get_message_by_attachment(self, attachment: str) -> MessageDTO | None:
        async with self._db_manager.session() as session:
            stmt = select(Message).where(Message.attachment == attachment)
            msg = (await session.execute(stmt)).scalars().first()
            return _message_dto(msg) if msg else None

    @handle_db_errors("getting unseen messages")
    async def unseen_for(self, user_id: int) -> list[UnseenSummaryDTO]:
        async with self._db_manager.session() as session:
            counts_stmt = select(
                Message.conversation_id, func.count(Message.id)
            ).join(
                Conversation, Conversation.id == Message.conversation_id
            ).where(
                Conversation.is_group == False,
                or_(
                    Conversation.user_low_id == user_id,
                    Conversation.user_high_id == user_id
                ),
                Message.sender_id != user_id,
                Message.seen == False
            ).group_by(
                Message.conversation_id
            ).order_by(Message.conversation_id)
            counts = (await session.execute(counts_stmt)).all()
            if not counts:
                return []

            conversation_ids = [conversation_id for conversation_id, _ in counts]
            conv_stmt = select(Conversation).where(Conversation.id.in_(conversation_ids))
            conversations = {c.id: c for c in (await session.execute(conv_stmt)).scalars().all()}

            latest_ids = [c.latest_message_id for c in conversations.values() if c.latest_message_id]
            latest = {}
            if latest_ids:
                latest_stmt = select(Message).where(Message.id.in_(latest_ids))
                latest = {m.id: _message_dto(m) for m in (await session.execute(latest_stmt)).scalars().all()}

            summaries = []
            for conversation_id, unseen_count in counts:
                conversation = conversations[conversation_id]
                counterparty_id = (
                    conversation.user_high_id
                    if user_id == conversation.user_low_id
                    else conversation.user_low_id
                )
                summaries.append(
                    UnseenSummaryDTO(
                        conversation_id=conversation_id,
                        unseen_count=unseen_count,
                        counterparty_id=counterparty_id,
                        latest_message=latest.get(conversation.latest_message_id)
                    )
                )
            return summaries

    @handle_db_errors("marking messages seen")
    async def mark_seen(self, conversation_id: int, user_id: int) -> int:
        async with self._db_manager.session() as session:
            await _load_conversation(session, conversation_id, user_id)

            stmt = update(Message).where(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.seen == False
            ).values(seen=True)
            result = await session.execute(stmt)
            updated = result.rowcount

        if updated:
            self._logger.debug("Marked %s messages seen in conversation %s for user %s", updated, conversation_id, user_id)
        return updated
