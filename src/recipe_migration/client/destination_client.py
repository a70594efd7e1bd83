"""Client for the destination application's migration write API.

The destination exposes two upsert endpoints. Both accept a JSON body that
already carries the pre-assigned destination id, so a retried request that
actually reached the server the first time does not create a duplicate.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from recipe_migration.client.base_client import BaseAPIClient
from recipe_migration.client.exceptions import APIError, ConfigurationError
from recipe_migration.config import DestinationConfig, LoggingConfig
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)

USERS_ENDPOINT = "/api/migration/users"
RECIPES_ENDPOINT = "/api/migration/recipes"


@dataclass
class DestinationResponse:
    """Effective id of an upserted record (and, for users, whether it pre-existed)."""

    new_id: str
    existed: bool = False


class DestinationClient(BaseAPIClient):
    """Authenticated client for the create/upsert user and recipe endpoints."""

    def __init__(
        self,
        config: DestinationConfig,
        logging_config: LoggingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize destination client.

        Args:
            config: Destination API configuration
            logging_config: Optional logging configuration (payload logging)
            transport: Optional httpx transport (used by tests)

        Raises:
            ConfigurationError: If no auth token is configured
        """
        if not config.token:
            raise ConfigurationError(
                "Destination auth token is not set (destination.token / DESTINATION__TOKEN)"
            )

        logging_config = logging_config or LoggingConfig()
        super().__init__(
            base_url=config.url,
            token=config.token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            connect_timeout=config.connect_timeout,
            rate_limit=config.rate_limit,
            max_connections=config.max_connections,
            log_payloads=logging_config.log_payloads,
            max_payload_size=logging_config.max_payload_size,
            transport=transport,
        )
        self.config = config

    @staticmethod
    def _extract_id(data: dict[str, Any], nested_key: str, fallback: str) -> str:
        """Pick the effective id from ``{id}`` or ``{<nested_key>: {id}}``."""
        if data.get("id"):
            return str(data["id"])
        nested = data.get(nested_key)
        if isinstance(nested, dict) and nested.get("id"):
            return str(nested["id"])
        return fallback

    async def create_user(self, payload: dict[str, Any]) -> DestinationResponse:
        """Create a user, or report the existing account with the same email.

        Args:
            payload: User payload including the pre-assigned ``id``

        Returns:
            DestinationResponse with the effective id and the ``existed`` flag

        Raises:
            APIError: For API errors
            NetworkError: For transport failures
        """
        data = await self.post(USERS_ENDPOINT, json_data=payload)
        if not isinstance(data, dict):
            raise APIError("Unexpected user response shape", response={"detail": str(data)})

        response = DestinationResponse(
            new_id=self._extract_id(data, "user", payload["id"]),
            existed=bool(data.get("existed", False)),
        )
        logger.debug(
            "user_upserted",
            email=payload.get("email"),
            new_id=response.new_id,
            existed=response.existed,
        )
        return response

    async def create_recipe(self, payload: dict[str, Any]) -> DestinationResponse:
        """Create a recipe.

        Args:
            payload: Recipe payload including the pre-assigned ``id``

        Returns:
            DestinationResponse with the effective id

        Raises:
            APIError: For API errors
            NetworkError: For transport failures
        """
        data = await self.post(RECIPES_ENDPOINT, json_data=payload)
        if not isinstance(data, dict):
            raise APIError("Unexpected recipe response shape", response={"detail": str(data)})

        response = DestinationResponse(new_id=self._extract_id(data, "recipe", payload["id"]))
        logger.debug("recipe_created", title=payload.get("title"), new_id=response.new_id)
        return response
