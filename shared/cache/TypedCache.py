"""In-process cache with a separate TTL per kind of data.

Entries are keyed ``kind:entity_id[:owner_id]``. Payloads are deep-copied on the way
in and on the way out, so a caller mutating its object never changes what another
caller reads. Expiry is the only eviction signal.
"""

import asyncio
import copy
import time
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from shared.helper.HelperConfig import HelperConfig

KIND_DOCUMENT_DETAILS = "document-details"
KIND_DOCUMENT_RAW = "document-raw"
KIND_PDF_TEMPLATE = "pdf-template"
KIND_VALIDATION_RESULTS = "validation-results"
KIND_RECENT_DOCUMENTS = "recent-documents"

DEFAULT_TTLS: dict[str, float] = {
    KIND_DOCUMENT_DETAILS: 30 * 60,
    KIND_DOCUMENT_RAW: 30 * 60,
    KIND_PDF_TEMPLATE: 60 * 60,
    KIND_VALIDATION_RESULTS: 10 * 60,
    KIND_RECENT_DOCUMENTS: 15 * 60,
}


class CacheEntry(BaseModel):
    payload: Any = None
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now >= self.stored_at + self.ttl


class TypedCache:
    """Process-local cache owned by one engine instance."""

    def __init__(
        self,
        helper_config: HelperConfig,
        ttls: dict[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.default_ttl = helper_config.get_number_val("CACHE_DEFAULT_TTL", default=15 * 60)
        self.max_entries = int(helper_config.get_number_val("CACHE_MAX_ENTRIES", default=1000))
        self.cleanup_interval = helper_config.get_number_val("CACHE_CLEANUP_INTERVAL", default=5 * 60)
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}

        self._clock = clock
        self._sleep = sleep
        self._entries: dict[str, CacheEntry] = {}
        self._sweeper: asyncio.Task | None = None

    ##########################################
    ################ KEYS ####################
    ##########################################

    @staticmethod
    def make_key(kind: str, entity_id: str, owner_id: str | None = None) -> str:
        key = f"{kind}:{entity_id}"
        if owner_id is not None:
            key += f":{owner_id}"
        return key

    def ttl_for(self, kind: str) -> float:
        return self.ttls.get(kind, self.default_ttl)

    ##########################################
    ################ ACCESS ##################
    ##########################################

    def get(self, kind: str, entity_id: str, owner_id: str | None = None) -> Any | None:
        """Return a copy of the cached value, or None when absent or expired."""
        key = self.make_key(kind, entity_id, owner_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return copy.deepcopy(entry.payload)

    def set(self, kind: str, entity_id: str, value: Any, owner_id: str | None = None, ttl: float | None = None) -> None:
        """Store a copy of ``value``. ``ttl`` overrides the kind's TTL for this entry only."""
        if len(self._entries) >= self.max_entries:
            removed = self.cleanup()
            if len(self._entries) >= self.max_entries:
                self.logging.debug(
                    "Cache still holds %d entries after sweeping %d expired ones; inserting anyway.",
                    len(self._entries), removed,
                )

        key = self.make_key(kind, entity_id, owner_id)
        self._entries[key] = CacheEntry(
            payload=copy.deepcopy(value),
            stored_at=self._clock(),
            ttl=self.ttl_for(kind) if ttl is None else ttl,
        )

    def has(self, kind: str, entity_id: str, owner_id: str | None = None) -> bool:
        key = self.make_key(kind, entity_id, owner_id)
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    def invalidate(self, kind: str, entity_id: str, owner_id: str | None = None) -> bool:
        """Drop one entry. Returns True if something was removed."""
        return self._entries.pop(self.make_key(kind, entity_id, owner_id), None) is not None

    def cleanup(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def get_stats(self) -> dict:
        per_kind: dict[str, int] = {}
        for key in self._entries:
            kind = key.split(":", 1)[0]
            per_kind[kind] = per_kind.get(kind, 0) + 1
        return {"size": len(self._entries), "max_entries": self.max_entries, "kinds": per_kind}

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        if self._sweeper is None:
            return
        task, self._sweeper = self._sweeper, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self.cleanup_interval)
            removed = self.cleanup()
            if removed:
                self.logging.debug("Cache sweep removed %d expired entries.", removed)
