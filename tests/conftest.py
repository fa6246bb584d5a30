import asyncio
import fnmatch
import logging
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from dishka import Provider, Scope, provide
from fastapi.testclient import TestClient
from jose import jwt
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from pairchat.config import Config, JWTConfig, DBConfig, RedisConfig, UploadConfig, ChatConfig
from pairchat.core.broadcaster import DeliveryBroadcaster
from pairchat.core.db_manager import DatabaseManager
from pairchat.core.gateways import UserGateway, ConversationGateway, MessageGateway
from pairchat.main import create_app, make_container
from pairchat.providers import AdaptersProvider, GatewaysProvider, ServicesProvider

SECRET_KEY = "test-secret"


def make_token(user_id: int, secret: str = SECRET_KEY, token_type: str = "access", expires_in: int = 300) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {
            "sub": str(user_id),
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
        },
        secret,
        algorithm="HS256",
    )


def auth_headers(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeRedis:
    """In-memory async stand-in for the Redis commands the app issues."""

    def __init__(self):
        self.store: dict[str, int] = {}
        self.closed = False
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def incr(self, key):
        self._check()
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def decr(self, key):
        self._check()
        self.store[key] = int(self.store.get(key, 0)) - 1
        return self.store[key]

    async def scan_iter(self, match=None):
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.store.pop(key, None) is not None
        return removed

    async def get(self, key):
        value = self.store.get(key)
        return None if value is None else str(value).encode()

    async def set(self, key, value):
        self.store[key] = int(value)
        return True

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class FakeWebSocket:
    """Records frames sent through a Connection; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]


class StaticAdaptersProvider(Provider):
    def __init__(self, config: Config, redis: FakeRedis):
        super().__init__()
        self._config = config
        self._redis = redis

    @provide(scope=Scope.APP)
    def get_config(self) -> Config:
        return self._config

    @provide(scope=Scope.APP)
    def get_redis(self) -> Redis:
        return self._redis


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        jwt=JWTConfig(secret_key=SECRET_KEY),
        db=DBConfig(path=str(tmp_path / "chat.db"), timeout=5.0),
        redis=RedisConfig(),
        upload=UploadConfig(path=str(tmp_path / "uploads"), max_bytes=1024),
        chat=ChatConfig(typing_timeout=3),
    )


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("pairchat.tests")


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def db_manager(config):
    manager = DatabaseManager(config)
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def users(db_manager, logger):
    gateway = UserGateway(db_manager, logger)
    return [
        await gateway.create_user(name, f"{name}@example.com")
        for name in ("alice", "bob", "carol")
    ]


@pytest.fixture
def user_gateway(db_manager, logger) -> UserGateway:
    return UserGateway(db_manager, logger)


@pytest.fixture
def conversation_gateway(db_manager, logger) -> ConversationGateway:
    return ConversationGateway(db_manager, logger)


@pytest.fixture
def message_gateway(db_manager, logger) -> MessageGateway:
    return MessageGateway(db_manager, logger)


@pytest.fixture
def broadcaster(logger) -> DeliveryBroadcaster:
    return DeliveryBroadcaster(logger)


@pytest.fixture
def seeded_users(config):
    """Users written to the test database before the app starts."""
    async def seed():
        manager = DatabaseManager(config)
        await manager.create_tables()
        gateway = UserGateway(manager)
        try:
            return [
                await gateway.create_user(name, f"{name}@example.com")
                for name in ("alice", "bob", "carol")
            ]
        finally:
            await manager.close()

    return asyncio.run(seed())


def build_app(config: Config, redis: FakeRedis):
    container = make_container(
        StaticAdaptersProvider(config, redis),
        AdaptersProvider(),
        GatewaysProvider(),
        ServicesProvider(),
    )
    return asyncio.run(create_app(container))


@pytest.fixture
def client(config, fake_redis, seeded_users):
    with TestClient(build_app(config, fake_redis)) as test_client:
        yield test_client
