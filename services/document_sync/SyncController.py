"""Incremental sync controller.

Walks the registry's recent-documents listing page by page, newest first, and keeps
only what is newer than the stored cursor. Pagination stops early once a page shows
that the already-synced tail has been reached, but only while the registry's
newest-first ordering holds; one out-of-order pair disables early stopping for the
rest of the run.
"""

import asyncio
import random
from typing import Awaitable, Callable

from services.document_sync.BackoffPolicy import BackoffPolicy
from shared.clients.registry.RegistryClientInterface import RegistryClientInterface
from shared.errors import (
    InvalidSyncInputError,
    RegistryAuthError,
    RegistryError,
    RegistryRateLimitError,
    SyncFailedError,
)
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import SyncedDocument
from shared.models.registry import DocumentsPage
from shared.models.sync import SyncMode, SyncResult, SyncSession, SyncSource, SyncStats
from shared.store.DocumentStoreInterface import DocumentStoreInterface

STOP_NO_MORE_PAGES = "no-more-pages"
STOP_MAX_PAGES = "max-pages"
STOP_EARLY = "early-stop"
STOP_CONSECUTIVE_ERRORS = "consecutive-errors"
STOP_AUTH_FAILED = "auth-failed"

EARLY_STOP_CONSECUTIVE = "consecutive-not-newer"
EARLY_STOP_MAJORITY = "majority-not-newer"


class SyncController:
    def __init__(
        self,
        helper_config: HelperConfig,
        registry_client: RegistryClientInterface,
        store: DocumentStoreInterface,
        backoff: BackoffPolicy | None = None,
        rate_limit_backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: random.Random | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._client = registry_client
        self._store = store
        self._sleep = sleep
        self._rand = rand or random.Random()
        self._backoff = backoff or BackoffPolicy.from_config(helper_config, "SYNC_RETRY", base_delay=1.0, rand=self._rand)
        self._rate_limit_backoff = rate_limit_backoff or BackoffPolicy.from_config(
            helper_config, "SYNC_RATE_LIMIT", base_delay=2.0, rand=self._rand
        )
        self.max_delay = self._backoff.max_delay

        self.page_size = int(helper_config.get_number_val("SYNC_PAGE_SIZE", default=100))
        self.max_incremental_pages = int(helper_config.get_number_val("SYNC_MAX_PAGES", default=5))
        self.max_full_pages = int(helper_config.get_number_val("SYNC_MAX_FULL_PAGES", default=100))
        self.max_retries = int(helper_config.get_number_val("SYNC_MAX_RETRIES", default=5))
        self.max_consecutive_errors = int(helper_config.get_number_val("SYNC_MAX_CONSECUTIVE_ERRORS", default=3))
        self.max_rate_limit_waits = int(helper_config.get_number_val("SYNC_MAX_RATE_LIMIT_WAITS", default=20))
        self.fallback_limit = int(helper_config.get_number_val("SYNC_FALLBACK_LIMIT", default=1000))

        # early stop heuristics
        self.early_stop_consecutive = int(helper_config.get_number_val("SYNC_EARLY_STOP_CONSECUTIVE", default=10))
        self.early_stop_majority_min = int(helper_config.get_number_val("SYNC_EARLY_STOP_MAJORITY_MIN", default=5))

        # pacing between pages, in seconds
        self.page_delay = helper_config.get_number_val("SYNC_PAGE_DELAY", default=0.5)
        self.page_delay_low = helper_config.get_number_val("SYNC_PAGE_DELAY_LOW", default=1.0)
        self.page_delay_critical = helper_config.get_number_val("SYNC_PAGE_DELAY_CRITICAL", default=2.0)
        self.page_delay_jitter = helper_config.get_number_val("SYNC_PAGE_DELAY_JITTER", default=0.2)

    ##########################################
    ############### CORE SYNC ################
    ##########################################

    async def sync(
        self,
        mode: SyncMode = SyncMode.INCREMENTAL,
        max_pages: int | None = None,
        force_refresh: bool = False,
    ) -> SyncResult:
        """Run one sync against the registry.

        Args:
            mode (SyncMode): Full or incremental. Incremental without a stored cursor behaves as full.
            max_pages (int | None): Hard cap on pages requested. Defaults depend on the effective mode.
            force_refresh (bool): Only logged here; cache bypass happens in the facade.

        Returns:
            SyncResult: Documents from the registry (source "api") or, when the registry gave
            nothing, the latest persisted documents (source "fallback").

        Raises:
            InvalidSyncInputError: If max_pages is smaller than 1.
            RegistryAuthError: If authentication failed and nothing is persisted.
            SyncFailedError: If the registry produced nothing and nothing is persisted.
        """
        if max_pages is not None and max_pages < 1:
            raise InvalidSyncInputError(f"max_pages must be at least 1, got {max_pages}")

        session = await self._open_session(mode)
        page_limit = max_pages or (self.max_incremental_pages if session.is_incremental else self.max_full_pages)
        self.logging.info(
            "Starting %s sync (cursor=%s, max_pages=%d, force_refresh=%s)...",
            "incremental" if session.is_incremental else "full",
            session.cursor.isoformat() if session.cursor else None,
            page_limit,
            force_refresh,
        )

        documents: list[SyncedDocument] = []
        while True:
            if session.consecutive_errors >= self.max_consecutive_errors:
                session.stop_reason = STOP_CONSECUTIVE_ERRORS
                self.logging.error("Stopping sync after %d consecutive failed pages.", session.consecutive_errors)
                break
            if session.page_no > page_limit:
                session.stop_reason = STOP_MAX_PAGES
                break

            page = await self._fetch_page_with_retry(session)
            if session.auth_failed:
                session.stop_reason = STOP_AUTH_FAILED
                break
            if page is None:
                session.page_no += 1
                continue

            documents.extend(self._absorb_page(session, page))

            if session.early_stop:
                session.stop_reason = STOP_EARLY
                break
            if not page.pagination.has_more:
                session.stop_reason = STOP_NO_MORE_PAGES
                break
            if session.page_no >= page_limit:
                session.stop_reason = STOP_MAX_PAGES
                break

            await self._sleep(self._page_delay(session))
            session.page_no += 1

        return await self._finish(session, documents)

    async def _open_session(self, mode: SyncMode) -> SyncSession:
        cursor = None
        if mode == SyncMode.INCREMENTAL:
            try:
                cursor = await self._store.find_most_recent_sync_timestamp()
            except Exception as e:
                self.logging.warning("Could not read sync cursor from store, running full sync: %s", e)
            if cursor is None:
                self.logging.info("No persisted documents yet; incremental sync runs as full sync.")
        return SyncSession(mode=mode, cursor=cursor)

    ##########################################
    ############## PAGE FETCH ################
    ##########################################

    async def _fetch_page_with_retry(self, session: SyncSession) -> DocumentsPage | None:
        """Fetch the session's current page, retrying according to the failure kind.

        Returns None when the page is given up on. Sets ``session.auth_failed`` when
        authentication cannot be recovered.
        """
        retries = 0
        rate_limit_waits = 0
        while True:
            if session.remaining is not None and session.remaining <= 0:
                wait = self._rate_limit_backoff.delay_until(session.reset_at)
                self.logging.warning("Rate limit exhausted, waiting %.1fs for reset before page %d.", wait, session.page_no)
                await self._sleep(wait)
                session.remaining = None

            try:
                page = await self._client.do_fetch_documents_page(session.page_no, self.page_size)
            except RegistryAuthError as e:
                if session.auth_refresh_used:
                    return self._auth_failed(session, e)
                session.auth_refresh_used = True
                self.logging.warning("Registry rejected the token on page %d, refreshing once: %s", session.page_no, e)
                try:
                    await self._client.token_provider.refresh()
                except RegistryAuthError as refresh_error:
                    return self._auth_failed(session, refresh_error)
                continue
            except RegistryRateLimitError as e:
                rate_limit_waits += 1
                if rate_limit_waits > self.max_rate_limit_waits:
                    return self._page_failed(session, e, f"still rate limited after {self.max_rate_limit_waits} waits")
                session.rate_limit_waits += 1
                delay = self._rate_limit_backoff.compute_delay(rate_limit_waits - 1, hint=e.rate_limit)
                self.logging.warning(
                    "Rate limited on page %d (wait %d), sleeping %.1fs.", session.page_no, rate_limit_waits, delay
                )
                await self._sleep(delay)
                session.remaining = None
                continue
            except RegistryError as e:
                if retries >= self.max_retries:
                    return self._page_failed(session, e, f"gave up after {self.max_retries} retries")
                delay = self._backoff.compute_delay(retries)
                retries += 1
                self.logging.warning(
                    "Page %d failed with %s (retry %d/%d), retrying in %.1fs: %s",
                    session.page_no, e.__class__.__name__, retries, self.max_retries, delay, e,
                )
                await self._sleep(delay)
                continue

            session.remaining = page.rate_limit.remaining
            session.reset_at = page.rate_limit.reset_at
            session.consecutive_errors = 0
            session.pages_fetched += 1
            return page

    def _page_failed(self, session: SyncSession, error: RegistryError, reason: str) -> None:
        session.consecutive_errors += 1
        session.pages_failed += 1
        session.last_error = f"page {session.page_no}: {error}"
        self.logging.error(
            "Skipping page %d (%s, %d/%d consecutive failures): %s",
            session.page_no, reason, session.consecutive_errors, self.max_consecutive_errors, error,
        )
        return None

    def _auth_failed(self, session: SyncSession, error: RegistryAuthError) -> None:
        session.auth_failed = True
        session.last_error = f"authentication failed: {error}"
        self.logging.error("Registry authentication failed on page %d: %s", session.page_no, error)
        return None

    def _page_delay(self, session: SyncSession) -> float:
        delay = self.page_delay
        if session.remaining is not None:
            if session.remaining < 10:
                delay = self.page_delay_critical
            elif session.remaining < 50:
                delay = self.page_delay_low
        return delay + self._rand.uniform(0, self.page_delay_jitter)

    ##########################################
    ############ PAGE HANDLING ###############
    ##########################################

    def _absorb_page(self, session: SyncSession, page: DocumentsPage) -> list[SyncedDocument]:
        """Return the documents of ``page`` that belong in the result and update stop signals."""
        docs = page.documents
        self._verify_ordering(session, docs)

        if not session.is_incremental:
            session.new_count += len(docs)
            self.logging.info("Page %d: %d documents.", session.page_no, len(docs))
            return list(docs)

        newer: list[SyncedDocument] = []
        not_newer = 0
        for doc in docs:
            ts = doc.sync_timestamp()
            if ts is not None and ts > session.cursor:
                newer.append(doc)
                session.consecutive_not_newer = 0
                continue
            not_newer += 1
            session.consecutive_not_newer += 1
            if session.consecutive_not_newer >= self.early_stop_consecutive:
                self._mark_early_stop(session, EARLY_STOP_CONSECUTIVE)

        session.new_count += len(newer)
        session.not_newer_count += not_newer
        if not_newer >= self.early_stop_majority_min and not_newer > len(newer):
            self._mark_early_stop(session, EARLY_STOP_MAJORITY)

        self.logging.info(
            "Page %d: %d new, %d already synced.", session.page_no, len(newer), not_newer
        )
        return newer

    def _mark_early_stop(self, session: SyncSession, reason: str) -> None:
        if session.early_stop or not session.ordering_verified:
            return
        session.early_stop = True
        session.early_stop_reason = reason
        self.logging.info("Early stop after page %d (%s).", session.page_no, reason)

    def _verify_ordering(self, session: SyncSession, docs: list[SyncedDocument]) -> None:
        previous = session.last_seen_timestamp
        for doc in docs:
            ts = doc.sync_timestamp()
            if ts is None:
                continue
            if previous is not None and ts > previous and session.ordering_verified:
                session.ordering_verified = False
                self.logging.warning(
                    "Registry listing is not newest-first on page %d (document %s at %s after %s); early stop disabled for this run.",
                    session.page_no, doc.uuid, ts.isoformat(), previous.isoformat(),
                )
            previous = ts
        session.last_seen_timestamp = previous

    ##########################################
    ################ RESULT ##################
    ##########################################

    def _stats(self, session: SyncSession) -> SyncStats:
        return SyncStats(
            mode=SyncMode.INCREMENTAL if session.is_incremental else SyncMode.FULL,
            pages_fetched=session.pages_fetched,
            pages_failed=session.pages_failed,
            rate_limit_waits=session.rate_limit_waits,
            new_count=session.new_count,
            not_newer_count=session.not_newer_count,
            early_stop_reason=session.early_stop_reason,
            stop_reason=session.stop_reason,
            error=session.last_error,
        )

    async def _finish(self, session: SyncSession, documents: list[SyncedDocument]) -> SyncResult:
        stats = self._stats(session)
        self.logging.info(
            "Sync finished (%s): %d pages fetched, %d failed, %d rate-limit waits, %d documents.",
            session.stop_reason, session.pages_fetched, session.pages_failed, session.rate_limit_waits, len(documents),
        )
        if documents:
            return SyncResult(documents=documents, source=SyncSource.API, stats=stats)

        if session.is_incremental and session.pages_fetched > 0:
            self.logging.info("No documents newer than %s.", session.cursor.isoformat())
            return SyncResult(documents=[], source=SyncSource.API, stats=stats)

        reason = session.last_error or "registry returned no documents"
        self.logging.warning("Live sync produced nothing (%s); falling back to persisted documents.", reason)
        fallback = await self._store.find_recent(self.fallback_limit)
        if fallback:
            stats.error = reason
            return SyncResult(documents=fallback, source=SyncSource.FALLBACK, stats=stats)

        if session.auth_failed:
            raise RegistryAuthError(f"Sync failed and no persisted documents exist: {reason}")
        raise SyncFailedError(f"Sync failed and no persisted documents exist: {reason}")
