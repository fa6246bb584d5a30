from abc import ABC, abstractmethod

from .dto import *

class UserInterface(ABC):
    @abstractmethod
    async def create_user(
            self,
            username: str,
            email: str
    ) -> UserDTO:
        """
        Creates a new user record. Owned by the user-management side,
        used here for seeding.
        :param username:
        :param email:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_user_by_id(
            self,
            user_id: int
    ) -> UserDTO | None:
        """
        Get user by User.id
        :param user_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_user_by_email(
            self,
            email: str
    ) -> UserDTO | None:
        """
        Get user by User.email
        :param email:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def set_online(
            self,
            user_id: int,
            online: bool
    ) -> bool:
        """
        Updates the presence flag of a user.
        :param user_id:
        :param online:
        :return: False if the user does not exist
        """
        raise NotImplementedError()

    @abstractmethod
    async def set_all_offline(self) -> int:
        """
        Clears the presence flag of every user, used when no connection
        can be open (service startup).
        :return: number of users that were marked online
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_contacts(
            self,
            owner_id: int
    ) -> list[ContactDTO]:
        """
        Gets the contact list of a user with presence and block flags.
        :param owner_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def has_contact(
            self,
            owner_id: int,
            contact_id: int
    ) -> bool:
        """
        True if contact_id is already in the owner's contacts.
        :param owner_id:
        :param contact_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def add_contact(
            self,
            owner_id: int,
            contact_id: int
    ) -> bool:
        """
        Adds contact_id to the owner's contacts.
        :param owner_id:
        :param contact_id:
        :return: False if the contact already existed
        """
        raise NotImplementedError()

    @abstractmethod
    async def delete_contact(
            self,
            owner_id: int,
            contact_id: int
    ) -> bool:
        """
        Removes a contact. Removing an absent contact is a no-op.
        :param owner_id:
        :param contact_id:
        :return: True if a row was removed
        """
        raise NotImplementedError()

    @abstractmethod
    async def block_user(
            self,
            blocker_id: int,
            blocked_id: int
    ) -> bool:
        """
        Adds blocked_id to the blocker's blocked set.
        :param blocker_id:
        :param blocked_id:
        :return: False if already blocked
        """
        raise NotImplementedError()

    @abstractmethod
    async def unblock_user(
            self,
            blocker_id: int,
            blocked_id: int
    ) -> bool:
        """
        Removes blocked_id from the blocker's blocked set.
        :param blocker_id:
        :param blocked_id:
        :return: False if the user was not blocked
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_blocked_ids(
            self,
            blocker_id: int
    ) -> list[int]:
        """
        Gets the ids the user has blocked.
        :param blocker_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def is_blocked_between(
            self,
            user_a: int,
            user_b: int
    ) -> bool:
        """
        True if either user has blocked the other.
        :param user_a:
        :param user_b:
        :return:
        """
        raise NotImplementedError()


class ConversationInterface(ABC):
    @abstractmethod
    async def resolve(
            self,
            user_id: int,
            counterparty_id: int
    ) -> ConversationHistoryDTO:
        """
        Returns the single conversation between two users, creating it on
        first use, together with the history visible to user_id.
        :param user_id: requesting user
        :param counterparty_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_conversation(
            self,
            conversation_id: int
    ) -> ConversationDTO | None:
        """
        Gets a conversation by ID.
        :param conversation_id:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def clear(
            self,
            conversation_id: int,
            user_id: int
    ) -> None:
        """
        Hides the current history of a conversation from user_id.
        :param conversation_id:
        :param user_id:
        :return:
        """
        raise NotImplementedError()


class MessageInterface(ABC):
    @abstractmethod
    async def append(
            self,
            conversation_id: int,
            sender_id: int,
            content: str | None = None,
            attachment: str | None = None
    ) -> MessageDTO:
        """
        Persists a new message and makes it the conversation's latest.
        :param conversation_id:
        :param sender_id:
        :param content: text, trimmed before storing
        :param attachment: stored file reference
        :return: Created message
        """
        raise NotImplementedError()

    @abstractmethod
    async def delete_by_id(
            self,
            message_id: int,
            conversation_id: int,
            requester_id: int
    ) -> MessageDTO:
        """
        Permanently removes a message from a conversation.
        :param message_id:
        :param conversation_id:
        :param requester_id: must be the original sender
        :return: the deleted message
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_message_by_attachment(
            self,
            attachment: str
    ) -> MessageDTO | None:
        """
        Gets the message carrying the given attachment reference.
        :param attachment:
        :return:
        """
        raise NotImplementedError()

    @abstractmethod
    async def unseen_for(
            self,
            user_id: int
    ) -> list[UnseenSummaryDTO]:
        """
        Counts the counterparty's unseen messages per conversation.
        :param user_id:
        :return: one entry per conversation with at least one unseen message
        """
        raise NotImplementedError()

    @abstractmethod
    async def mark_seen(
            self,
            conversation_id: int,
            user_id: int
    ) -> int:
        """
        Marks every message not authored by user_id as seen.
        :param conversation_id:
        :param user_id:
        :return: number of messages updated
        """
        raise NotImplementedError()
