from abc import ABC, abstractmethod
from datetime import datetime

from shared.models.document import SyncedDocument


class DocumentStoreInterface(ABC):
    """
    Persistent store of synced documents. The single source of truth; the engine's
    cache only ever holds shortcuts in front of it.
    """

    async def boot(self) -> None:
        """Prepare connections or schema. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    async def find_recent(self, limit: int) -> list[SyncedDocument]:
        """
        Returns up to ``limit`` documents, most recently received first.
        """
        pass

    @abstractmethod
    async def find_most_recent_sync_timestamp(self) -> datetime | None:
        """
        Returns the newest validation (or, if never validated, receive) time of any stored document.
        """
        pass

    @abstractmethod
    async def find_last_sync_date(self) -> datetime | None:
        """
        Returns when any document was last written by a sync.
        """
        pass

    @abstractmethod
    async def upsert_by_uuid(self, doc: SyncedDocument) -> None:
        """
        Inserts the document or overwrites the stored one with the same uuid.

        Raises:
            TransientStoreConflict: On deadlock or write conflict. Safe to retry.
        """
        pass

    @abstractmethod
    async def count_all(self) -> int:
        pass
