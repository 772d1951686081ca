"""Models describing one synchronisation run and its outcome."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from shared.models.document import SyncedDocument


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncSource(str, Enum):
    API = "api"
    DATABASE = "database"
    FALLBACK = "fallback"


class SyncOptions(BaseModel):
    """
    Options for a single sync call.

    Attributes:
        mode (SyncMode): Full re-fetch or incremental against the stored cursor.
        max_pages (int | None): Hard cap on listing pages, None uses the configured default.
        force_refresh (bool): Bypass the result cache and the database freshness shortcut.
        owner_id (str | None): Scopes the cached result, e.g. the caller's TIN.
    """
    mode: SyncMode = SyncMode.INCREMENTAL
    max_pages: int | None = None
    force_refresh: bool = False
    owner_id: str | None = None


class WriteResult(BaseModel):
    success_count: int = 0
    error_count: int = 0
    errors: dict[str, str] = {}


class SyncStats(BaseModel):
    mode: SyncMode = SyncMode.INCREMENTAL
    pages_fetched: int = 0
    pages_failed: int = 0
    rate_limit_waits: int = 0
    new_count: int = 0
    not_newer_count: int = 0
    early_stop_reason: str | None = None
    stop_reason: str | None = None
    write_result: WriteResult | None = None
    polled_submissions: int = 0
    error: str | None = None


class SyncResult(BaseModel):
    documents: list[SyncedDocument] = []
    source: SyncSource = SyncSource.API
    cached: bool = False
    stats: SyncStats = Field(default_factory=SyncStats)


class SyncSession(BaseModel):
    """
    Bookkeeping for one controller run. Lives for the duration of ``sync()`` only.
    """
    mode: SyncMode
    cursor: datetime | None = None
    page_no: int = 1
    pages_fetched: int = 0
    pages_failed: int = 0
    consecutive_errors: int = 0

    # rate-limit telemetry from the most recent response
    remaining: int | None = None
    reset_at: datetime | None = None
    rate_limit_waits: int = 0

    new_count: int = 0
    not_newer_count: int = 0
    consecutive_not_newer: int = 0
    early_stop: bool = False
    early_stop_reason: str | None = None
    stop_reason: str | None = None
    ordering_verified: bool = True
    last_seen_timestamp: datetime | None = None

    auth_refresh_used: bool = False
    auth_failed: bool = False
    last_error: str | None = None

    @property
    def is_incremental(self) -> bool:
        return self.mode == SyncMode.INCREMENTAL and self.cursor is not None
