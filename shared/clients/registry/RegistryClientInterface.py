from abc import abstractmethod
from datetime import datetime, timezone
from typing import Callable

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.clients.auth.AuthClientInterface import AuthClientInterface
from shared.errors import (
    RegistryAuthError,
    RegistryRateLimitError,
    RegistryRequestError,
    RegistryTransientError,
)
from shared.helper.HelperConfig import HelperConfig
from shared.models.registry import DocumentsPage, RateLimitInfo
from shared.models.submission import SubmissionStatus


class RegistryClientInterface(ClientInterface):
    """
    Client for the e-invoicing registry. Performs exactly one HTTP call per method and
    classifies failures; retrying is the caller's job.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        token_provider: AuthClientInterface,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(helper_config=helper_config, transport=transport)
        self.token_provider = token_provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_client_type(self) -> str:
        return "registry"

    async def _get_auth_header(self) -> dict:
        token = await self.token_provider.get_token()
        return {"Authorization": f"Bearer {token}"}

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_documents_recent(self) -> str:
        pass

    @abstractmethod
    def _get_params_documents_recent(self, page_no: int, page_size: int) -> dict:
        """
        Returns the query parameters for one page of the recent-documents listing,
        sorted by validation time, newest first.
        """
        pass

    @abstractmethod
    def _get_endpoint_submission(self, submission_uid: str) -> str:
        pass

    @abstractmethod
    def _get_params_submission(self) -> dict:
        pass

    @abstractmethod
    def _get_endpoint_document_details(self, document_uuid: str) -> str:
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def _parse_endpoint_documents_recent(
        self, response: dict, page_no: int, page_size: int, rate_limit: RateLimitInfo
    ) -> DocumentsPage:
        pass

    @abstractmethod
    def _parse_endpoint_submission(self, response: dict, submission_uid: str) -> SubmissionStatus:
        pass

    def _check_response(self, response: httpx.Response, target: str) -> RateLimitInfo:
        """Extract rate-limit telemetry and raise the matching error for non-success responses.

        Raises:
            RegistryAuthError: On 401/403.
            RegistryRateLimitError: On 429.
            RegistryTransientError: On 5xx.
            RegistryRequestError: On any other non-2xx status.
        """
        rate_limit = RateLimitInfo.from_headers(response.headers, now=self._clock())
        status = response.status_code
        if status < 300:
            return rate_limit

        message = f"Registry answered {status} for {target}"
        if status in (401, 403):
            raise RegistryAuthError(message, status_code=status, target=target)
        if status == 429:
            raise RegistryRateLimitError(message, rate_limit=rate_limit, status_code=status, target=target)
        if status >= 500:
            raise RegistryTransientError(message, status_code=status, target=target)
        raise RegistryRequestError(f"{message}: {response.text[:200]}", status_code=status, target=target)

    def _json(self, response: httpx.Response, target: str) -> dict:
        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryTransientError(f"Registry returned invalid JSON for {target}", status_code=response.status_code, target=target) from e
        if not isinstance(payload, dict):
            raise RegistryRequestError(f"Registry returned {type(payload).__name__} instead of an object for {target}", status_code=response.status_code, target=target)
        return payload

    def _malformed(self, response: httpx.Response, target: str, error: Exception) -> RegistryRequestError:
        # pydantic ValidationError is a ValueError too
        self.logging.error("Registry response for %s does not match the expected shape: %s", target, error)
        return RegistryRequestError(
            f"Malformed registry response for {target}: {error.__class__.__name__}: {error}",
            status_code=response.status_code,
            target=target,
        )

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_documents_page(self, page_no: int, page_size: int) -> DocumentsPage:
        """Fetch one page of the recent-documents listing.

        Args:
            page_no (int): 1-based page number.
            page_size (int): Requested page length.

        Returns:
            DocumentsPage: Normalised documents, pagination info and rate-limit telemetry.
        """
        endpoint = self._get_endpoint_documents_recent()
        target = f"{endpoint} page {page_no}"
        response = await self.do_request(
            method="GET",
            endpoint=endpoint,
            params=self._get_params_documents_recent(page_no, page_size),
        )
        rate_limit = self._check_response(response, target)
        payload = self._json(response, target)
        try:
            return self._parse_endpoint_documents_recent(payload, page_no, page_size, rate_limit)
        except (TypeError, ValueError) as e:
            raise self._malformed(response, target, e) from e

    async def do_fetch_submission(self, submission_uid: str) -> SubmissionStatus:
        """Fetch the current status of a submission."""
        endpoint = self._get_endpoint_submission(submission_uid)
        response = await self.do_request(method="GET", endpoint=endpoint, params=self._get_params_submission())
        self._check_response(response, endpoint)
        payload = self._json(response, endpoint)
        try:
            return self._parse_endpoint_submission(payload, submission_uid)
        except (TypeError, ValueError) as e:
            raise self._malformed(response, endpoint, e) from e

    async def do_fetch_document_details(self, document_uuid: str) -> dict:
        """Fetch the registry's full details for one document, unmodified."""
        endpoint = self._get_endpoint_document_details(document_uuid)
        response = await self.do_request(method="GET", endpoint=endpoint)
        self._check_response(response, endpoint)
        return self._json(response, endpoint)
