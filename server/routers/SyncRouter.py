from fastapi import APIRouter, Depends, HTTPException, Query, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import SyncRequest
from server.models.responses import SyncResponse, TotalResponse
from services.document_sync.SyncService import SyncService
from shared.errors import (
    InvalidSyncInputError,
    RegistryAuthError,
    RegistryError,
    SyncError,
    SyncFailedError,
)
from shared.models.submission import SubmissionPollResult
from shared.models.sync import SyncOptions

router = APIRouter(tags=["sync"])


def _service(request: Request) -> SyncService:
    return request.app.state.sync_service


def _to_http_error(error: SyncError) -> HTTPException:
    """Map engine errors onto HTTP statuses."""
    if isinstance(error, InvalidSyncInputError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, RegistryAuthError):
        return HTTPException(status_code=401, detail=f"Registry authentication failed: {error}")
    if isinstance(error, SyncFailedError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, RegistryError) and error.status_code == 404:
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))


@router.post("/documents/sync")
async def sync_documents(
    request: Request,
    body: SyncRequest,
    _: None = Depends(verify_api_key),
) -> SyncResponse:
    """Return the latest documents, syncing with the registry when the cache and database are stale.

    Args:
        request (Request): FastAPI request (provides app.state.sync_service).
        body (SyncRequest): Mode, page cap, force flag and cache scope.
        _ (None): Auth dependency result (unused).

    Returns:
        SyncResponse: Documents with their source tag and run statistics.
    """
    options = SyncOptions(
        mode=body.mode,
        max_pages=body.maxPages,
        force_refresh=body.forceRefresh,
        owner_id=body.ownerId,
    )
    try:
        result = await _service(request).do_sync(options)
    except SyncError as e:
        raise _to_http_error(e) from e
    return SyncResponse.from_result(result)


@router.post("/sync/background")
async def sync_background(request: Request, _: None = Depends(verify_api_key)) -> SyncResponse:
    """Run the small incremental sync used by schedulers."""
    try:
        result = await _service(request).do_background_sync()
    except SyncError as e:
        raise _to_http_error(e) from e
    return SyncResponse.from_result(result)


@router.get("/sync/config")
async def sync_config(request: Request, _: None = Depends(verify_api_key)) -> dict:
    return _service(request).get_sync_config()


@router.get("/submission/{submission_uid}")
async def poll_submission(
    request: Request,
    submission_uid: str,
    maxAttempts: int = Query(default=10, ge=1, le=30),
    _: None = Depends(verify_api_key),
) -> SubmissionPollResult:
    """Poll a submission until it is terminal or the attempt budget runs out.

    A timeout is reported in the body with outcome "timeout", not as an HTTP error.
    """
    try:
        return await _service(request).poll_submission(submission_uid, max_attempts=maxAttempts)
    except SyncError as e:
        raise _to_http_error(e) from e


@router.get("/documents/recent-total")
async def recent_total(request: Request, _: None = Depends(verify_api_key)) -> TotalResponse:
    return TotalResponse(total=await _service(request).get_total_count())


@router.get("/documents/{document_uuid}/details")
async def document_details(
    request: Request,
    document_uuid: str,
    ownerId: str | None = None,
    _: None = Depends(verify_api_key),
) -> dict:
    try:
        return await _service(request).get_document_details(document_uuid, owner_id=ownerId)
    except SyncError as e:
        raise _to_http_error(e) from e
