"""Durable, chunked upserts of synced documents.

Documents are cut into batches, batches into small chunks. The members of one chunk
are upserted concurrently, chunks run one after another. Each upsert retries on
transient store conflicts; any other failure is recorded for that document only.
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from shared.clients.registry.DocumentNormalizer import normalize_document
from shared.errors import InvalidSyncInputError, TransientStoreConflict
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import SyncedDocument
from shared.models.sync import WriteResult
from shared.store.DocumentStoreInterface import DocumentStoreInterface

SYNC_STATUS_SUCCESS = "success"


class BatchWriter:
    def __init__(
        self,
        helper_config: HelperConfig,
        store: DocumentStoreInterface,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._store = store
        self._sleep = sleep
        self._rand = rand or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.batch_size = int(helper_config.get_number_val("WRITER_BATCH_SIZE", default=100))
        self.chunk_size = int(helper_config.get_number_val("WRITER_CHUNK_SIZE", default=5))
        self.max_retries = int(helper_config.get_number_val("WRITER_MAX_RETRIES", default=5))
        self.retry_base_delay = helper_config.get_number_val("WRITER_RETRY_BASE_DELAY", default=0.2)
        self.retry_jitter = helper_config.get_number_val("WRITER_RETRY_JITTER", default=0.1)

    ##########################################
    ################ INPUT ###################
    ##########################################

    def _coerce(self, documents: Sequence[SyncedDocument | dict]) -> list[SyncedDocument]:
        """Validate the input shape. Raw registry dicts are normalised on the way in.

        Raises:
            InvalidSyncInputError: If the input is not a sequence of documents.
        """
        if documents is None or isinstance(documents, (str, bytes, dict)) or not isinstance(documents, Sequence):
            raise InvalidSyncInputError(f"Expected a list of documents, got {type(documents).__name__}")

        coerced: list[SyncedDocument] = []
        for index, doc in enumerate(documents):
            if isinstance(doc, SyncedDocument):
                coerced.append(doc)
            elif isinstance(doc, dict):
                coerced.append(normalize_document(doc))
            else:
                raise InvalidSyncInputError(f"Element {index} is a {type(doc).__name__}, not a document")
        return coerced

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def save(self, documents: Sequence[SyncedDocument | dict]) -> WriteResult:
        """Upsert all documents and report how many made it.

        Args:
            documents: SyncedDocuments or raw registry document dicts.

        Returns:
            WriteResult: Success and error counts plus the error message per failed uuid.

        Raises:
            InvalidSyncInputError: Only for malformed input, never for per-document failures.
        """
        docs = self._coerce(documents)
        result = WriteResult()
        if not docs:
            return result

        self.logging.info("Saving %d documents in batches of %d...", len(docs), self.batch_size)
        for batch_start in range(0, len(docs), self.batch_size):
            batch = docs[batch_start: batch_start + self.batch_size]
            for chunk_start in range(0, len(batch), self.chunk_size):
                chunk = batch[chunk_start: chunk_start + self.chunk_size]
                outcomes = await asyncio.gather(
                    *[self._upsert_with_retry(doc) for doc in chunk],
                    return_exceptions=True,
                )
                for doc, outcome in zip(chunk, outcomes):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    if isinstance(outcome, BaseException):
                        result.error_count += 1
                        result.errors[doc.uuid] = f"{outcome.__class__.__name__}: {outcome}"
                    else:
                        result.success_count += 1

        self.logging.info(
            "Save complete: %d saved, %d failed.", result.success_count, result.error_count,
            color="green" if not result.error_count else None,
        )
        return result

    async def _upsert_with_retry(self, doc: SyncedDocument) -> None:
        stamped = doc.model_copy(update={"last_sync_date": self._clock(), "sync_status": SYNC_STATUS_SUCCESS})
        attempt = 0
        while True:
            try:
                await self._store.upsert_by_uuid(stamped)
                return
            except TransientStoreConflict as exc:
                attempt += 1
                if attempt > self.max_retries:
                    self.logging.error(
                        "Upsert of document %s gave up after %d conflicts: %s", doc.uuid, self.max_retries, exc
                    )
                    raise
                delay = self.retry_base_delay * (2 ** (attempt - 1)) + self._rand.uniform(0, self.retry_jitter)
                self.logging.warning(
                    "Transient conflict upserting document %s (attempt %d/%d), retrying in %.2fs: %s",
                    doc.uuid, attempt, self.max_retries, delay, exc,
                )
                await self._sleep(delay)
            except Exception as exc:
                self.logging.error("Upsert of document %s failed: %s", doc.uuid, exc)
                raise
