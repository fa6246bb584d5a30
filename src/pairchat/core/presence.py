from redis.asyncio import Redis
from redis.exceptions import RedisError
from functools import wraps
import logging

from .broadcaster import DeliveryBroadcaster, PRESENCE_CHANGED
from .db_manager import DatabaseManager
from .exceptions import InternalError
from .gateways import UserGateway


def handle_redis_errors(action: str):
    """
    Turns Redis failures into InternalError after logging them.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except RedisError as e:
                self.logger.error("Error %s in redis: %s", action, e)
                raise InternalError() from e
        return wrapper
    return decorator


class PresenceRegistry:
    """
    Online/offline state per identity.

    Open connections are counted per user in Redis, so a user stays online
    until the last of their connections closes. Only the 0 -> 1 and 1 -> 0
    transitions touch the database and notify other connected parties.
    Counters are wiped by ``reset`` on startup, since no connection
    survives a restart.

    Attributes:
        redis: async Redis client holding the connection counters
        db_manager: used to update User.is_online
        broadcaster: fan-out of presence-changed events
    """
    KEY_PREFIX = "presence:connections:"

    def __init__(
            self,
            redis: Redis,
            db_manager: DatabaseManager,
            broadcaster: DeliveryBroadcaster,
            logger: logging.Logger
    ):
        self.redis = redis
        self.db_manager = db_manager
        self.broadcaster = broadcaster
        self.logger = logger

    def _key(self, user_id: int) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    @handle_redis_errors("resetting presence counters")
    async def reset(self) -> int:
        """
        Drops every connection counter and marks all users offline.

        Returns:
            Number of counters removed
        """
        keys = [key async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*")]
        if keys:
            await self.redis.delete(*keys)

        stale = await UserGateway(self.db_manager, self.logger).set_all_offline()
        if keys or stale:
            self.logger.info("Presence reset: %s counters removed, %s users marked offline", len(keys), stale)
        return len(keys)

    @handle_redis_errors("reading connection count")
    async def connection_count(self, user_id: int) -> int:
        value = await self.redis.get(self._key(user_id))
        return int(value) if value else 0

    @handle_redis_errors("counting opened connection")
    async def connection_opened(self, user_id: int) -> bool:
        """
        Counts a newly announced connection.

        Returns:
            True if the user went from offline to online
        """
        count = await self.redis.incr(self._key(user_id))
        if count == 1:
            await self.mark_online(user_id)
            return True
        self.logger.debug("User %s has %s open connections", user_id, count)
        return False

    @handle_redis_errors("counting closed connection")
    async def connection_closed(self, user_id: int) -> bool:
        """
        Releases an announced connection.

        Returns:
            True if this was the user's last connection
        """
        count = await self.redis.decr(self._key(user_id))
        if count > 0:
            self.logger.debug("User %s still has %s open connections", user_id, count)
            return False
        if count < 0:
            self.logger.warning("Presence counter for user %s went negative, resetting", user_id)
            await self.redis.set(self._key(user_id), 0)
        await self.mark_offline(user_id)
        return True

    async def mark_online(self, user_id: int) -> None:
        await self._set_presence(user_id, True)

    async def mark_offline(self, user_id: int) -> None:
        await self._set_presence(user_id, False)

    async def _set_presence(self, user_id: int, online: bool) -> None:
        user_gateway = UserGateway(self.db_manager, self.logger)
        if not await user_gateway.set_online(user_id, online):
            self.logger.warning("Presence update for unknown user %s", user_id)
            return

        self.logger.info("User %s is now %s", user_id, "online" if online else "offline")
        await self.broadcaster.broadcast(
            PRESENCE_CHANGED,
            {"user_id": user_id, "online": online},
            exclude_user_id=user_id
        )
