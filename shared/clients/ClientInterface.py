from abc import ABC, abstractmethod

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData
from typing import Any
from shared.errors import RegistryTransientError
from shared.models.config import EnvConfig

from shared.helper.HelperConfig import HelperConfig

# outbound calls never wait less than 30s or more than 5min
MIN_TIMEOUT = 30.0
MAX_TIMEOUT = 300.0
DEFAULT_TIMEOUT = 60.0


class ClientInterface(ABC):
    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_clamped_number_val(
            f"{self.get_client_type().upper()}_TIMEOUT",
            default=DEFAULT_TIMEOUT,
            min_val=MIN_TIMEOUT,
            max_val=MAX_TIMEOUT,
        )

        # client and config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Reads every declared setting once so a misconfigured client fails at construction.

        Raises:
            ValueError: If a required setting is missing or malformed.
        """
        for config in self._get_required_config():
            _ = self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        """
        Returns the type of the client in lowercase. E.g. "registry"
        """
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "myinvois"
        """
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Settings checked by validate_full_configuration().
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return "_".join((self.get_client_type(), self.get_engine_name(), raw_key)).upper()

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads a client-scoped setting, e.g. "BASE_URL" resolves to REGISTRY_MYINVOIS_BASE_URL.

        Args:
            raw_key (str): Key without the client prefix
            default (Any): Used when unset. None makes the key required
            val_type (str): "string" or "number"

        Raises:
            ValueError: On a missing required key or an unknown val_type.
        """
        readers = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
        }
        reader = readers.get(val_type)
        if reader is None:
            raise ValueError(
                f"Unsupported config value type '{val_type}' for '{raw_key}' in "
                f"{self.get_client_type()} client '{self.get_engine_name()}'."
            )
        return reader(self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    async def _get_auth_header(self) -> dict:
        """
        Returns the authentication header for the next request. May fetch a fresh credential.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the base URL of the backend server from env variables (e.g. "https://api.myinvois.hasil.gov.my")
        """
        pass

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        """Initialise the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        with_auth: bool = True,
    ) -> httpx.Response:
        """Send an HTTP request to the backend.

        Args:
            method: HTTP method (GET, POST, ...).
            content: Raw bytes body.
            data: Form-encoded body.
            json: JSON-serialisable body.
            params: URL query parameters.
            endpoint: Path to append to the base URL (leading slash optional).
            additional_headers: Extra headers that override the defaults.
            with_auth: Attach the auth header.

        Returns:
            The raw httpx.Response. Status handling is left to the caller.

        Raises:
            RuntimeError: If boot() was not called.
            RegistryTransientError: On timeouts and transport failures.
        """
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before making requests.")

        endpoint = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""

        headers: dict = {"Accept": "application/json"}
        if with_auth:
            headers.update(await self._get_auth_header())
        if additional_headers:
            headers.update(additional_headers)

        kwargs: dict = {
            "url": f"{self._get_base_url().rstrip('/')}{endpoint}",
            "headers": headers,
            "timeout": self.timeout,
            "params": params,
        }

        # add exactly one body argument
        if content is not None:
            kwargs["content"] = content
        elif data is not None:
            kwargs["data"] = data
        elif json is not None:
            kwargs["json"] = json

        try:
            return await self._client.request(method, **kwargs)
        except httpx.TransportError as e:
            self.logging.warning("%s %s failed before a response arrived: %s", method, kwargs["url"], e)
            raise RegistryTransientError(
                f"{method} {endpoint or '/'} failed: {e.__class__.__name__}: {e}", target=endpoint
            ) from e
