"""Canonical e-invoice document as the sync engine stores and returns it."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator

MONEY_FIELDS = (
    "totalSales",
    "totalExcludingTax",
    "totalDiscount",
    "totalNetAmount",
    "totalPayableAmount",
)
TIMESTAMP_FIELDS = ("dateTimeIssued", "dateTimeReceived", "dateTimeValidated", "last_sync_date")


class SyncedDocument(BaseModel):
    """
    A registry document after normalisation. ``uuid`` is the natural key for upserts.

    All timestamps are timezone-aware. Naive values coming from the registry or the
    store are read as UTC, so ordering comparisons are always instant comparisons.
    """
    model_config = ConfigDict(extra="ignore")

    # identity
    uuid: str
    submissionUid: str | None = None
    longId: str | None = None
    internalId: str | None = None

    # classification
    typeName: str | None = None
    typeVersionName: str | None = None

    # parties
    issuerTin: str | None = None
    issuerName: str | None = None
    receiverId: str | None = None
    receiverName: str | None = None
    receiverTIN: str | None = None
    receiverRegistrationNo: str | None = None

    # timestamps
    dateTimeIssued: datetime | None = None
    dateTimeReceived: datetime | None = None
    dateTimeValidated: datetime | None = None

    # money
    totalSales: float = 0
    totalExcludingTax: float = 0
    totalDiscount: float = 0
    totalNetAmount: float = 0
    totalPayableAmount: float = 0
    documentCurrency: str | None = None

    # lifecycle
    status: str | None = None
    documentStatusReason: str | None = None
    last_sync_date: datetime | None = None
    sync_status: str | None = None

    @field_validator(*TIMESTAMP_FIELDS, mode="after")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator(*MONEY_FIELDS, mode="before")
    @classmethod
    def _null_money_is_zero(cls, value):
        return 0 if value is None or value == "" else value

    @field_validator("uuid", mode="after")
    @classmethod
    def _uuid_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("uuid must not be blank")
        return value

    def sync_timestamp(self) -> datetime | None:
        """The instant incremental sync orders by: validation time, else receive time."""
        return self.dateTimeValidated or self.dateTimeReceived
