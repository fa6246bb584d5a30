from dishka import Provider, Scope, provide
from redis.asyncio import Redis
from typing import AsyncIterable
import logging

from pairchat.config import Config, load_config
from pairchat.core.broadcaster import DeliveryBroadcaster
from pairchat.core.db_manager import DatabaseManager
from pairchat.core.gateways import UserGateway, ConversationGateway, MessageGateway
from pairchat.core.presence import PresenceRegistry

from pairchat.services import AuthAPI, ChatAPI, ContactAPI, RealtimeAPI

class ConfigProvider(Provider):
    @provide(scope=Scope.APP)
    def get_config(self) -> Config:
        return load_config(".env")

class RedisProvider(Provider):
    @provide(scope=Scope.APP)
    async def get_redis(self, config: Config) -> AsyncIterable[Redis]:
        client = Redis(host=config.redis.host, port=config.redis.port, db=0)
        yield client
        await client.aclose()

class AdaptersProvider(Provider):
    @provide(scope=Scope.APP)
    def get_logger(self) -> logging.Logger:
        return logging.getLogger("pairchat")

    @provide(scope=Scope.APP)
    async def get_db_manager(self, config: Config) -> AsyncIterable[DatabaseManager]:
        db_manager = DatabaseManager(config)
        yield db_manager
        await db_manager.close()

    @provide(scope=Scope.APP)
    def get_broadcaster(self, logger: logging.Logger) -> DeliveryBroadcaster:
        return DeliveryBroadcaster(logger)

    @provide(scope=Scope.APP)
    def get_presence(
            self,
            redis: Redis,
            db_manager: DatabaseManager,
            broadcaster: DeliveryBroadcaster,
            logger: logging.Logger
    ) -> PresenceRegistry:
        return PresenceRegistry(redis, db_manager, broadcaster, logger)

class GatewaysProvider(Provider):
    @provide(scope=Scope.REQUEST)
    def get_user_gateway(
            self,
            db_manager: DatabaseManager,
            logger: logging.Logger
    ) -> UserGateway:
        return UserGateway(db_manager, logger)

    @provide(scope=Scope.REQUEST)
    def get_conversation_gateway(
            self,
            db_manager: DatabaseManager,
            logger: logging.Logger
    ) -> ConversationGateway:
        return ConversationGateway(db_manager, logger)

    @provide(scope=Scope.REQUEST)
    def get_message_gateway(
            self,
            db_manager: DatabaseManager,
            logger: logging.Logger
    ) -> MessageGateway:
        return MessageGateway(db_manager, logger)

class ServicesProvider(Provider):
    @provide(scope=Scope.APP)
    def get_auth_api(
        self,
        config: Config,
        logger: logging.Logger
    ) -> AuthAPI:
        return AuthAPI(
            secret_key=config.jwt.secret_key,
            logger=logger,
            algorithm=config.jwt.algorithm
        )

    @provide(scope=Scope.APP)
    def get_chat_api(
            self,
            config: Config,
            logger: logging.Logger,
            auth_api: AuthAPI
    ) -> ChatAPI:
        return ChatAPI(
            logger=logger,
            auth_api=auth_api,
            upload_config=config.upload
        )

    @provide(scope=Scope.APP)
    def get_contact_api(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI
    ) -> ContactAPI:
        return ContactAPI(
            logger=logger,
            auth_api=auth_api
        )

    @provide(scope=Scope.APP)
    def get_realtime_api(
            self,
            config: Config,
            logger: logging.Logger,
            auth_api: AuthAPI
    ) -> RealtimeAPI:
        return RealtimeAPI(
            logger=logger,
            auth_api=auth_api,
            typing_timeout=config.chat.typing_timeout
        )
