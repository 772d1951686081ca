import asyncio
import time
from abc import abstractmethod
from typing import Callable

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.errors import RegistryAuthError, RegistryTransientError
from shared.helper.HelperConfig import HelperConfig

# a token is treated as expired this many seconds before the registry says so
EXPIRY_BUFFER_SECONDS = 5 * 60


class AuthClientInterface(ClientInterface):
    """
    Token provider for the registry. Hands out a cached bearer token and fetches a new
    one when the cached token is missing or about to expire.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(helper_config=helper_config, transport=transport)
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._refresh_lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_client_type(self) -> str:
        return "auth"

    async def _get_auth_header(self) -> dict:
        # the token endpoint authenticates with the form body
        return {}

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_token(self) -> str:
        """
        Returns the endpoint path of the token endpoint (e.g. "/connect/token").
        """
        pass

    @abstractmethod
    def _get_token_request_data(self) -> dict:
        """
        Returns the form fields sent to the token endpoint.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def _parse_token_response(self, response: dict) -> tuple[str, float]:
        """
        Extracts the token and its lifetime from the token endpoint's answer.

        Returns:
            tuple[str, float]: The access token and its lifetime in seconds.

        Raises:
            RegistryAuthError: If the response does not carry a token.
        """
        pass

    ##########################################
    ################ TOKENS ##################
    ##########################################

    def current_token(self) -> str | None:
        """Return the cached token, or None when it is missing or inside the expiry buffer."""
        if self._token and self._clock() < self._expires_at - EXPIRY_BUFFER_SECONDS:
            return self._token
        return None

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        """Return a usable token, fetching a new one if needed."""
        token = self.current_token()
        if token:
            return token
        async with self._refresh_lock:
            # another caller may have refreshed while we waited
            token = self.current_token()
            if token:
                return token
            return await self._fetch_token()

    async def refresh(self) -> str:
        """Discard the cached token and fetch a new one.

        Raises:
            RegistryAuthError: If the token endpoint cannot issue a token.
        """
        async with self._refresh_lock:
            self.invalidate()
            return await self._fetch_token()

    async def _fetch_token(self) -> str:
        endpoint = self._get_endpoint_token()
        try:
            response = await self.do_request(
                method="POST",
                endpoint=endpoint,
                data=self._get_token_request_data(),
                with_auth=False,
            )
        except RegistryTransientError as e:
            raise RegistryAuthError(f"Token request failed: {e}", target=endpoint) from e

        if response.status_code >= 300:
            self.logging.error(
                "Token request to '%s' failed with status %d: %s",
                self.get_engine_name(), response.status_code, response.text,
            )
            raise RegistryAuthError(
                f"Token request failed with status {response.status_code}",
                status_code=response.status_code,
                target=endpoint,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryAuthError("Token endpoint returned invalid JSON", status_code=response.status_code, target=endpoint) from e

        token, lifetime = self._parse_token_response(payload)
        self._token = token
        self._expires_at = self._clock() + lifetime
        self.logging.info("Fetched new registry token from '%s', valid for %ds.", self.get_engine_name(), int(lifetime))
        return token
