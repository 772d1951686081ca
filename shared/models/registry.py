"""Wire-level models for the registry listing API."""

from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Mapping

from pydantic import BaseModel, Field

from shared.models.document import SyncedDocument

# both spellings are seen in the wild
_REMAINING_HEADERS = ("x-rate-limit-remaining", "x-ratelimit-remaining")
_RESET_HEADERS = ("x-rate-limit-reset", "x-ratelimit-reset")


def _first_header(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        val = headers.get(name)
        if val is not None and str(val).strip():
            return str(val).strip()
    return None


def _parse_instant(raw: str, now: datetime) -> datetime | None:
    """Parse a reset header: epoch seconds/millis, delta seconds, ISO-8601 or HTTP date."""
    try:
        number = float(raw)
    except ValueError:
        number = None

    if number is not None:
        if number > 1e12:
            return datetime.fromtimestamp(number / 1000, tz=timezone.utc)
        if number > 1e9:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        return now + timedelta(seconds=number)

    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RateLimitInfo(BaseModel):
    """
    Rate-limit telemetry the registry attaches to responses.

    Attributes:
        remaining (int | None): Requests left in the current window.
        reset_at (datetime | None): When the window resets.
        retry_after (float | None): Seconds the registry asked us to wait (429 only).
    """
    remaining: int | None = None
    reset_at: datetime | None = None
    retry_after: float | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], now: datetime | None = None) -> "RateLimitInfo":
        now = now or datetime.now(timezone.utc)

        remaining = None
        raw_remaining = _first_header(headers, _REMAINING_HEADERS)
        if raw_remaining is not None:
            try:
                remaining = int(float(raw_remaining))
            except ValueError:
                remaining = None

        reset_at = None
        raw_reset = _first_header(headers, _RESET_HEADERS)
        if raw_reset is not None:
            reset_at = _parse_instant(raw_reset, now)

        retry_after = None
        raw_retry = _first_header(headers, ("retry-after",))
        if raw_retry is not None:
            try:
                retry_after = max(0.0, float(raw_retry))
            except ValueError:
                retry_at = _parse_instant(raw_retry, now)
                if retry_at is not None:
                    retry_after = max(0.0, (retry_at - now).total_seconds())

        return cls(remaining=remaining, reset_at=reset_at, retry_after=retry_after)


class PaginationInfo(BaseModel):
    page_no: int
    page_size: int
    total_pages: int | None = None
    total_count: int | None = None
    has_more: bool = False


class DocumentsPage(BaseModel):
    """
    One page of the registry's recent-documents listing, already normalised.
    """
    documents: list[SyncedDocument] = []
    pagination: PaginationInfo
    rate_limit: RateLimitInfo = Field(default_factory=RateLimitInfo)
