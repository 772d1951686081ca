from shared.clients.auth.AuthClientInterface import AuthClientInterface
from shared.errors import RegistryAuthError
from shared.models.config import EnvConfig

DEFAULT_TOKEN_LIFETIME = 3600


class AuthClientMyinvois(AuthClientInterface):
    def __init__(self, helper_config, transport=None, **kwargs):
        super().__init__(helper_config=helper_config, transport=transport, **kwargs)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._client_id = self.get_config_val("CLIENT_ID", default=None, val_type="string")
        self._client_secret = self.get_config_val("CLIENT_SECRET", default=None, val_type="string")
        self._scope = self.get_config_val("SCOPE", default="InvoicingAPI", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Myinvois"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="CLIENT_ID", val_type="string", default=None),
            EnvConfig(env_key="CLIENT_SECRET", val_type="string", default=None),
            EnvConfig(env_key="SCOPE", val_type="string", default="InvoicingAPI"),
        ]

    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_token(self) -> str:
        return "/connect/token"

    def _get_token_request_data(self) -> dict:
        return {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
            "scope": self._scope,
        }

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _parse_token_response(self, response: dict) -> tuple[str, float]:
        token = response.get("access_token")
        if not token:
            raise RegistryAuthError("Token endpoint response has no access_token", target=self._get_endpoint_token())
        try:
            lifetime = float(response.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        return token, lifetime
