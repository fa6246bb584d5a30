import asyncio
import logging
from contextlib import asynccontextmanager

from dishka import AsyncContainer, Provider, make_async_container
from dishka.integrations.fastapi import setup_dishka
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from pairchat.config import load_config
from pairchat.core.db_manager import DatabaseManager
from pairchat.core.exceptions import ChatError, InternalError
from pairchat.core.presence import PresenceRegistry
from pairchat.providers import (
    ConfigProvider,
    RedisProvider,
    AdaptersProvider,
    GatewaysProvider,
    ServicesProvider,
)
from pairchat.services import AuthAPI, ChatAPI, ContactAPI, RealtimeAPI

logger = logging.getLogger("pairchat")

@asynccontextmanager
async def lifespan(app: FastAPI):
    db_manager = await app.state.dishka_container.get(DatabaseManager)
    await db_manager.create_tables()
    logger.info("Database tables ready")

    presence = await app.state.dishka_container.get(PresenceRegistry)
    await presence.reset()
    yield
    await app.state.dishka_container.close()

async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s %s", request.method, request.url.path, exc_info=exc.__cause__)
        return JSONResponse(status_code=exc.status_code, content={"detail": InternalError.default_message})

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

def make_container(*providers: Provider) -> AsyncContainer:
    if not providers:
        providers = (
            ConfigProvider(),
            RedisProvider(),
            AdaptersProvider(),
            GatewaysProvider(),
            ServicesProvider(),
        )
    return make_async_container(*providers)

async def create_app(container: AsyncContainer | None = None) -> FastAPI:
    container = container or make_container()

    app = FastAPI(title="pairchat", lifespan=lifespan)
    setup_dishka(container, app)
    app.add_exception_handler(ChatError, chat_error_handler)

    for api_type in (AuthAPI, ChatAPI, ContactAPI, RealtimeAPI):
        api = await container.get(api_type)
        app.include_router(api.get_router())

    return app

def main():
    config = load_config(".env")
    configure_logging(config.log_level)
    app = asyncio.run(create_app())
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=config.log_level.lower())

if __name__ == "__main__":
    main()
