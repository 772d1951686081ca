"""Synchronisation facade.

Entry point for callers that want the latest registry documents. Serves from the
result cache or a recently synced database when possible, otherwise runs the
controller, persists what it fetched and follows up on open submissions. Callers
always get live, cached, or last-known-good data tagged with its source.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from services.document_sync.BatchWriter import BatchWriter
from services.document_sync.SubmissionPoller import SubmissionPoller
from services.document_sync.SyncController import SyncController
from shared.cache.TypedCache import KIND_DOCUMENT_DETAILS, KIND_RECENT_DOCUMENTS, TypedCache
from shared.clients.registry.RegistryClientInterface import RegistryClientInterface
from shared.errors import InvalidSyncInputError
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import SyncedDocument
from shared.models.submission import SubmissionPollResult
from shared.models.sync import SyncMode, SyncOptions, SyncResult, SyncSource, SyncStats
from shared.store.DocumentStoreInterface import DocumentStoreInterface

OPEN_SUBMISSION_STATUSES = {"submitted", "in progress", "pending"}
RECENT_DOCUMENTS_CACHE_ID = "recent"
BACKGROUND_MAX_PAGES = 3


class SyncService:
    """Orchestrates cache, controller, writer and poller for one engine instance."""

    def __init__(
        self,
        helper_config: HelperConfig,
        registry_client: RegistryClientInterface,
        store: DocumentStoreInterface,
        cache: TypedCache,
        controller: SyncController | None = None,
        writer: BatchWriter | None = None,
        poller: SubmissionPoller | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._client = registry_client
        self._store = store
        self.cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._controller = controller or SyncController(helper_config, registry_client, store, sleep=sleep)
        self._writer = writer or BatchWriter(helper_config, store, sleep=sleep)
        self._poller = poller or SubmissionPoller(helper_config, registry_client, self._writer, sleep=sleep)

        self.sync_threshold = timedelta(minutes=helper_config.get_number_val("SYNC_THRESHOLD_MINUTES", default=15))
        self.api_result_ttl = helper_config.get_number_val("SYNC_API_RESULT_TTL", default=15 * 60)
        self.database_result_ttl = helper_config.get_number_val("SYNC_DATABASE_RESULT_TTL", default=5 * 60)
        self.fallback_limit = int(helper_config.get_number_val("SYNC_FALLBACK_LIMIT", default=1000))

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        await self._store.boot()
        self.cache.start()

    async def close(self) -> None:
        await self.cache.stop()
        await self._store.close()

    ##########################################
    ############### CORE SYNC ################
    ##########################################

    async def do_sync(self, options: SyncOptions | None = None) -> SyncResult:
        """Return the latest documents, syncing with the registry when needed.

        Args:
            options (SyncOptions | None): Mode, page cap, force flag and cache scope.

        Returns:
            SyncResult: Documents tagged "api", "database" or "fallback"; ``cached`` is set
            when the result came from the result cache.

        Raises:
            SyncFailedError: If nothing could be fetched and nothing is persisted.
            RegistryAuthError: Same, when authentication was the cause.
        """
        options = options or SyncOptions()

        if options.force_refresh:
            self.cache.invalidate(KIND_RECENT_DOCUMENTS, RECENT_DOCUMENTS_CACHE_ID, options.owner_id)
        else:
            cached = self.cache.get(KIND_RECENT_DOCUMENTS, RECENT_DOCUMENTS_CACHE_ID, options.owner_id)
            if cached is not None:
                result = SyncResult.model_validate(cached)
                result.cached = True
                self.logging.info("Serving %d documents from cache (%s).", len(result.documents), result.source.value)
                return result

            fresh = await self._fresh_database_result()
            if fresh is not None:
                self._cache_result(fresh, options)
                return fresh

        result = await self._controller.sync(
            mode=options.mode, max_pages=options.max_pages, force_refresh=options.force_refresh
        )

        if result.source == SyncSource.API and result.documents:
            result.stats.write_result = await self._writer.save(result.documents)
            open_uids = self._open_submission_uids(result.documents)
            if open_uids:
                self.logging.info("Polling %d open submissions...", len(open_uids))
                polled = await self._poller.poll_many(open_uids, max_attempts=self._poller.background_max_attempts)
                result.stats.polled_submissions = len(polled)

        self._cache_result(result, options)
        return result

    async def do_background_sync(self) -> SyncResult:
        """Small incremental sync meant for schedulers: few pages, cache respected."""
        return await self.do_sync(SyncOptions(mode=SyncMode.INCREMENTAL, max_pages=BACKGROUND_MAX_PAGES))

    async def _fresh_database_result(self) -> SyncResult | None:
        try:
            last_sync = await self._store.find_last_sync_date()
            if last_sync is None or self._clock() - last_sync >= self.sync_threshold:
                return None
            documents = await self._store.find_recent(self.fallback_limit)
        except Exception as e:
            self.logging.warning("Could not check the store for a recent sync, syncing live: %s", e)
            return None
        if not documents:
            return None
        self.logging.info(
            "Last sync at %s is within %s; serving %d documents from the database.",
            last_sync.isoformat(), self.sync_threshold, len(documents),
        )
        return SyncResult(
            documents=documents,
            source=SyncSource.DATABASE,
            stats=SyncStats(stop_reason="database-fresh"),
        )

    def _cache_result(self, result: SyncResult, options: SyncOptions) -> None:
        if not result.documents:
            return
        ttl = self.api_result_ttl if result.source == SyncSource.API else self.database_result_ttl
        self.cache.set(
            KIND_RECENT_DOCUMENTS,
            RECENT_DOCUMENTS_CACHE_ID,
            result.model_dump(),
            owner_id=options.owner_id,
            ttl=ttl,
        )

    @staticmethod
    def _open_submission_uids(documents: list[SyncedDocument]) -> list[str]:
        uids: list[str] = []
        for doc in documents:
            if doc.submissionUid and (doc.status or "").strip().lower() in OPEN_SUBMISSION_STATUSES:
                if doc.submissionUid not in uids:
                    uids.append(doc.submissionUid)
        return uids

    ##########################################
    ############### LOOKUPS ##################
    ##########################################

    async def poll_submission(self, submission_uid: str, max_attempts: int | None = None) -> SubmissionPollResult:
        return await self._poller.poll_submission(submission_uid, max_attempts=max_attempts)

    async def get_document_details(self, document_uuid: str, owner_id: str | None = None) -> dict:
        """Return the registry's details for a document, from cache when possible."""
        if not document_uuid or not document_uuid.strip():
            raise InvalidSyncInputError("document uuid must not be empty")
        cached = self.cache.get(KIND_DOCUMENT_DETAILS, document_uuid, owner_id)
        if cached is not None:
            return cached
        details = await self._client.do_fetch_document_details(document_uuid)
        self.cache.set(KIND_DOCUMENT_DETAILS, document_uuid, details, owner_id=owner_id)
        return details

    async def get_total_count(self) -> int:
        return await self._store.count_all()

    def get_sync_config(self) -> dict:
        """Effective settings of the engine, for operators."""
        controller = self._controller
        return {
            "pageSize": controller.page_size,
            "maxIncrementalPages": controller.max_incremental_pages,
            "maxFullPages": controller.max_full_pages,
            "maxRetries": controller.max_retries,
            "maxConsecutiveErrors": controller.max_consecutive_errors,
            "earlyStopThreshold": controller.early_stop_consecutive,
            "earlyStopMajorityMin": controller.early_stop_majority_min,
            "baseDelay": controller.page_delay,
            "maxDelay": controller.max_delay,
            "syncThresholdMinutes": self.sync_threshold.total_seconds() / 60,
            "backgroundMaxPages": BACKGROUND_MAX_PAGES,
            "pollMaxAttempts": self._poller.max_attempts,
            "pollBackgroundMaxAttempts": self._poller.background_max_attempts,
            "cache": self.cache.get_stats(),
        }
