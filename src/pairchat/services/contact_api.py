from fastapi import status, Depends, APIRouter

from dishka import FromDishka
from dishka.integrations.fastapi import inject

import logging

from pairchat.core.exceptions import NotFoundError, InvalidOperationError
from pairchat.core.gateways import UserGateway
from .auth_api import AuthAPI
from .models.contact_api_models import *
from .models.chat_api_models import StatusResponse

class ContactAPI:
    """
    Main class for contact-related API endpoints.

    Handles the contact list and the blocked set of the current user. The
    blocked set is what the chat core consults before storing or relaying
    anything between two users.

    Attributes:
        logger: Logger instance for tracking operations
        auth_api: Authentication API instance for user validation
        contact_router: FastAPI router containing contact endpoints
    """
    def __init__(
            self,
            logger: logging.Logger,
            auth_api: AuthAPI
    ):
        self.logger = logger
        self.auth_api = auth_api

        self._contact_router = APIRouter(prefix="/contacts", tags=["Contacts"])

        self._register_endpoints()

    @property
    def contact_router(self) -> APIRouter:
        return self._contact_router

    def get_router(self) -> APIRouter:
        return self._contact_router

    def _register_endpoints(self):
        @self.contact_router.get("", response_model=list[ContactResponse])
        @inject
        async def get_my_contacts(
                user_gateway: FromDishka[UserGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            List the current user's contacts with their presence.

            Returns:
                List of contacts, oldest first
            """
            user_id = await self.auth_api.get_current_user(token)
            contacts = await user_gateway.get_contacts(user_id)
            return [ContactResponse.model_validate(contact) for contact in contacts]

        @self.contact_router.post("", status_code=status.HTTP_201_CREATED, response_model=StatusResponse)
        @inject
        async def add_contact(
                request_data: AddContactRequest,
                user_gateway: FromDishka[UserGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            Add a user to the contact list by email.

            Raises:
                NotFoundError: If no user has that email
                InvalidOperationError: If adding yourself or a duplicate
            """
            user_id = await self.auth_api.get_current_user(token)

            contact = await user_gateway.get_user_by_email(request_data.email)
            if not contact:
                raise NotFoundError("Contact not found")

            if contact.id == user_id:
                raise InvalidOperationError("You cannot add yourself")

            if await user_gateway.has_contact(user_id, contact.id):
                raise InvalidOperationError("Contact already exists")

            if not await user_gateway.add_contact(user_id, contact.id):
                raise InvalidOperationError("Contact already exists")

            self.logger.info("User %s added contact %s", user_id, contact.id)
            return StatusResponse(status="contact added")

        @self.contact_router.delete("/{contact_id}", response_model=StatusResponse)
        @inject
        async def delete_contact(
                contact_id: int,
                user_gateway: FromDishka[UserGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            user_id = await self.auth_api.get_current_user(token)
            await user_gateway.delete_contact(user_id, contact_id)
            return StatusResponse(status="contact deleted")

        @self.contact_router.post("/{contact_id}/block", response_model=StatusResponse)
        @inject
        async def block_contact(
                contact_id: int,
                user_gateway: FromDishka[UserGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            """
            Block a user. Messages and typing events between the two are refused
            while the block is in place.

            Raises:
                NotFoundError: If the user does not exist
                InvalidOperationError: If blocking yourself or already blocked
            """
            user_id = await self.auth_api.get_current_user(token)

            if contact_id == user_id:
                raise InvalidOperationError("You cannot block yourself")

            if not await user_gateway.get_user_by_id(contact_id):
                raise NotFoundError("User not found")

            if not await user_gateway.block_user(user_id, contact_id):
                raise InvalidOperationError("Contact is already blocked")

            self.logger.info("User %s blocked user %s", user_id, contact_id)
            return StatusResponse(status="contact blocked")

        @self.contact_router.post("/{contact_id}/unblock", response_model=StatusResponse)
        @inject
        async def unblock_contact(
                contact_id: int,
                user_gateway: FromDishka[UserGateway],
                token: str = Depends(self.auth_api.oauth2_scheme)
        ):
            user_id = await self.auth_api.get_current_user(token)

            if not await user_gateway.unblock_user(user_id, contact_id):
                raise InvalidOperationError("Contact is not blocked")

            self.logger.info("User %s unblocked user %s", user_id, contact_id)
            return StatusResponse(status="contact unblocked")
