from fastapi import status, HTTPException, Depends, APIRouter
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError, ExpiredSignatureError
from datetime import datetime, timezone
from redis.asyncio import Redis

from dishka import FromDishka
from dishka.integrations.fastapi import inject

import logging

from pairchat.core.db_manager import DatabaseManager
from pairchat.core.exceptions import UnauthorizedError, NotFoundError
from pairchat.core.gateways import UserGateway
from .models.auth_api_models import *


class AuthAPI:
    """
    Caller identity for the chat core.

    Tokens are issued by the account service; this class only verifies them
    and extracts the user ID. It also exposes the service health check and
    the current user's profile.

    Attributes:
        SECRET_KEY (str): Secret key shared with the token issuer
        ALGORITHM (str): JWT signing algorithm (HS256)
        logger (logging.Logger): Logger instance
        oauth2_scheme (OAuth2PasswordBearer): Bearer token extractor
        _auth_router (APIRouter): FastAPI router for identity endpoints
    """
    def __init__(
            self,
            secret_key: str,
            logger: logging.Logger,
            algorithm: str = "HS256"
    ):
        self.SECRET_KEY = secret_key
        self.ALGORITHM = algorithm
        self.logger = logger
        self.oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login")
        self._auth_router = APIRouter(tags=["Authentication"])
        self._register_endpoints()

    @property
    def auth_router(self) -> APIRouter:
        return self._auth_router

    def get_router(self) -> APIRouter:
        return self._auth_router

    def decode_token(self, token: str | None) -> int:
        """
        Validate JWT token and extract user ID.
        Args:
            token: JWT token string
        Returns:
            int: User ID extracted from token
        Raises:
            UnauthorizedError: If token is missing, invalid, expired, or has wrong type
        """
        if not token:
            raise UnauthorizedError("Not authenticated")
        try:
            payload = jwt.decode(token, self.SECRET_KEY, algorithms=[self.ALGORITHM])
        except ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except JWTError as e:
            raise UnauthorizedError("Invalid token") from e

        if payload.get("type") != "access":
            raise UnauthorizedError("Invalid token type")

        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as e:
            raise UnauthorizedError("Invalid authentication credentials") from e

    async def get_current_user(self, token: str) -> int:
        return self.decode_token(token)

    def _register_endpoints(self):
        """
        Register identity endpoints with the FastAPI router.

        - GET /health: Health check
        - GET /me: Get current user information
        """
        @self.auth_router.get("/health", response_model=HealthResponse)
        @inject
        async def health_check(
                redis: FromDishka[Redis],
                db_manager: FromDishka[DatabaseManager]
        ):
            """
            Health check endpoint to verify Redis and database connectivity.
            Returns:
                HealthResponse: Health status with timestamp and service information
            Raises:
                HTTPException: If Redis or the database is unavailable
            """
            try:
                await redis.ping()
                await db_manager.ping()
            except Exception as e:
                self.logger.error("Health check failed: %s", str(e))
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="Service unavailable"
                )
            return HealthResponse(
                status="healthy",
                timestamp=datetime.now(timezone.utc).isoformat(),
                service="chat",
                redis="connected",
                database="connected"
            )

        @self.auth_router.get("/me", response_model=UserResponse)
        @inject
        async def get_current_user_info(
                user_gateway: FromDishka[UserGateway],
                token: str = Depends(self.oauth2_scheme)
        ):
            """
            Get current authenticated user's information.
            Returns:
                UserResponse: Current user with presence flag and blocked users
            Raises:
                NotFoundError: If user is not found
            """
            user_id = await self.get_current_user(token)
            user = await user_gateway.get_user_by_id(user_id)
            if not user:
                raise NotFoundError("User not found")

            blocked = await user_gateway.get_blocked_ids(user_id)
            return UserResponse(
                id=user.id,
                username=user.username,
                email=user.email,
                is_online=user.is_online,
                blocked_user_ids=blocked
            )
