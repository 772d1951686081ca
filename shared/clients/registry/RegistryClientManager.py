import httpx

from shared.helper.HelperConfig import HelperConfig
from shared.clients.auth.AuthClientInterface import AuthClientInterface
from shared.clients.registry.RegistryClientInterface import RegistryClientInterface


class RegistryClientManager:
    """
    Builds the registry client and its token provider for the engine named in REGISTRY_ENGINE.
    """

    def __init__(self, helper_config: HelperConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self._transport = transport
        self.engine = self._get_engine_from_env()
        self.auth_client: AuthClientInterface = self._instantiate("auth", "AuthClient")
        self.client: RegistryClientInterface = self._instantiate(
            "registry", "RegistryClient", token_provider=self.auth_client
        )

    def _get_engine_from_env(self) -> str:
        """
        Reads the registry engine from ENV configuration.

        Returns:
            str: The engine name with the first letter capitalised, e.g. "Myinvois".
        """
        engine = self.helper_config.get_string_val("REGISTRY_ENGINE", default="myinvois")
        return engine.strip().lower().capitalize()

    def _instantiate(self, package: str, class_prefix: str, **kwargs):
        className = f"{class_prefix}{self.engine}"
        try:
            module = __import__(
                f"shared.clients.{package}.{self.engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported registry engine specified: '{self.engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config, transport=self._transport, **kwargs)
        self.logging.debug("Instantiated %s client for engine: %s", package, self.engine)
        return client

    def get_client(self) -> RegistryClientInterface:
        return self.client

    def get_auth_client(self) -> AuthClientInterface:
        return self.auth_client

    async def boot(self) -> None:
        await self.auth_client.boot()
        await self.client.boot()

    async def close(self) -> None:
        await self.client.close()
        await self.auth_client.close()
