from shared.clients.registry.DocumentNormalizer import normalize_document
from shared.clients.registry.RegistryClientInterface import RegistryClientInterface
from shared.errors import InvalidSyncInputError
from shared.models.config import EnvConfig
from shared.models.registry import DocumentsPage, PaginationInfo, RateLimitInfo
from shared.models.submission import SubmissionStatus


class RegistryClientMyinvois(RegistryClientInterface):
    def __init__(self, helper_config, token_provider, transport=None, **kwargs):
        super().__init__(helper_config=helper_config, token_provider=token_provider, transport=transport, **kwargs)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Myinvois"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
        ]

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_documents_recent(self) -> str:
        return "/api/v1.0/documents/recent"

    def _get_params_documents_recent(self, page_no: int, page_size: int) -> dict:
        return {
            "pageNo": page_no,
            "pageSize": page_size,
            "sortBy": "dateTimeValidated",
            "sortOrder": "desc",
        }

    def _get_endpoint_submission(self, submission_uid: str) -> str:
        return f"/api/v1.0/documentsubmissions/{submission_uid}"

    def _get_params_submission(self) -> dict:
        return {"pageNo": 1, "pageSize": 100}

    def _get_endpoint_document_details(self, document_uuid: str) -> str:
        return f"/api/v1.0/documents/{document_uuid}/details"

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _parse_endpoint_documents_recent(
        self, response: dict, page_no: int, page_size: int, rate_limit: RateLimitInfo
    ) -> DocumentsPage:
        items = response.get("result") or []
        docs = []
        for item in items:
            try:
                docs.append(normalize_document(item))
            except InvalidSyncInputError as e:
                self.logging.warning("Skipping malformed document on page %d: %s", page_no, e)

        # the registry has shipped both names for the listing metadata
        meta = response.get("pagination") or response.get("metadata") or {}
        if not isinstance(meta, dict):
            meta = {}
        total_pages = meta.get("totalPages")
        if not items:
            has_more = False
        elif total_pages is not None:
            has_more = page_no < int(total_pages)
        else:
            has_more = len(items) == page_size

        return DocumentsPage(
            documents=docs,
            pagination=PaginationInfo(
                page_no=page_no,
                page_size=page_size,
                total_pages=total_pages,
                total_count=meta.get("totalCount"),
                has_more=has_more,
            ),
            rate_limit=rate_limit,
        )

    def _parse_endpoint_submission(self, response: dict, submission_uid: str) -> SubmissionStatus:
        documents = response.get("documentSummary")
        if not isinstance(documents, list):
            documents = []
        return SubmissionStatus(
            submission_uid=response.get("submissionUid") or submission_uid,
            overall_status=response.get("overallStatus"),
            document_count=response.get("documentCount") or len(documents),
            documents=documents,
        )
