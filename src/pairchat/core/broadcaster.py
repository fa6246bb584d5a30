"""
In-process fan-out of chat events to live WebSocket connections.

Connections are registered once authenticated, and join per-conversation
topics explicitly. Events never touch the database: typing indicators are
relayed and forgotten, and delivered messages are already persisted by the
time they are published.
"""
from collections import defaultdict
from typing import Any, Iterable
import asyncio
import logging
import uuid

from fastapi import WebSocket

MESSAGE_DELIVERED = "message-delivered"
MESSAGE_DELETED = "message-deleted"
TYPING_INDICATOR = "typing-indicator"
PRESENCE_CHANGED = "presence-changed"


class Connection:
    """
    One accepted WebSocket bound to the identity from its token.

    Sends are serialized so that concurrent publishers cannot interleave
    frames on the same socket.
    """

    def __init__(self, websocket: WebSocket, user_id: int):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.announced = False
        self.conversations: set[int] = set()
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, data: dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id})"


class DeliveryBroadcaster:
    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)
        self._connections: dict[str, Connection] = {}
        self._topics: dict[int, set[str]] = defaultdict(set)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    def unregister(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)
        for conversation_id in list(connection.conversations):
            self.unsubscribe(connection, conversation_id)

    def subscribe(self, connection: Connection, conversation_id: int) -> None:
        self._topics[conversation_id].add(connection.id)
        connection.conversations.add(conversation_id)

    def unsubscribe(self, connection: Connection, conversation_id: int) -> None:
        members = self._topics.get(conversation_id)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._topics[conversation_id]
        connection.conversations.discard(conversation_id)

    def subscribers(self, conversation_id: int) -> list[Connection]:
        return [
            self._connections[connection_id]
            for connection_id in self._topics.get(conversation_id, ())
            if connection_id in self._connections
        ]

    def connections_of(self, user_id: int) -> list[Connection]:
        return [c for c in self._connections.values() if c.user_id == user_id]

    async def publish(
            self,
            conversation_id: int,
            event: str,
            data: dict[str, Any],
            exclude_user_id: int | None = None
    ) -> int:
        """
        Sends an event to every subscriber of a conversation except the
        sender's own connections.

        Returns:
            Number of connections the event was delivered to
        """
        targets = [
            c for c in self.subscribers(conversation_id)
            if c.user_id != exclude_user_id
        ]
        return await self._fan_out(targets, event, data)

    async def broadcast(
            self,
            event: str,
            data: dict[str, Any],
            exclude_user_id: int | None = None
    ) -> int:
        targets = [
            c for c in self._connections.values()
            if c.user_id != exclude_user_id
        ]
        return await self._fan_out(targets, event, data)

    async def _fan_out(self, targets: Iterable[Connection], event: str, data: dict[str, Any]) -> int:
        targets = list(targets)
        if not targets:
            return 0

        results = await asyncio.gather(
            *(connection.send(event, data) for connection in targets),
            return_exceptions=True
        )

        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                self._logger.warning("Dropping dead connection %s: %s", connection, result)
                self.unregister(connection)
            else:
                delivered += 1
        return delivered
