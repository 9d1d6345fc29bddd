"""
Identity service client

Resolves a verified user id to the contact data needed for notifications.
"""

from typing import Any

from orderflow.clients.base import CollaboratorClient
from orderflow.core.config import settings
from orderflow.core.logging import get_logger

logger = get_logger(__name__)


class UserClient(CollaboratorClient):
    service_name = "identity"

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """
        Fetch a user from the identity service

        Returns:
            User data dict, or None if the identity service does not know the user
        """
        logger.debug("identity_api_call", user_id=user_id, url=self.base_url)
        response = await self._request("GET", f"/users/{user_id}")

        if response.status_code == 404:
            logger.info("identity_user_not_found", user_id=user_id)
            return None
        response.raise_for_status()

        user_data = response.json()
        logger.info("identity_user_fetched", user_id=user_id)
        return user_data


# Global instance
user_client = UserClient(settings.IDENTITY_SERVICE_URL)
