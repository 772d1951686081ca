"""Maps the registry's drifting field names onto SyncedDocument.

Every canonical field has one ordered list of source fields. The first source that
is present and not empty wins; values are never merged. A literal default closes
the chain for fields that must always carry a value.
"""

from typing import Any

from pydantic import ValidationError

from shared.errors import InvalidSyncInputError
from shared.models.document import SyncedDocument

FIELD_PRIORITIES: dict[str, tuple[str, ...]] = {
    # identity
    "uuid": ("uuid",),
    "submissionUid": ("submissionUid", "submissionUID"),
    "longId": ("longId",),
    "internalId": ("internalId",),
    # classification
    "typeName": ("typeName",),
    "typeVersionName": ("typeVersionName",),
    # parties
    "issuerTin": ("issuerTin", "supplierTin"),
    "issuerName": ("issuerName", "supplierName"),
    "receiverId": ("receiverId", "buyerTin", "buyerTIN"),
    "receiverName": ("receiverName", "buyerName"),
    "receiverTIN": ("receiverTIN", "buyerTIN"),
    "receiverRegistrationNo": ("receiverRegistrationNo", "buyerRegistrationNo"),
    # timestamps
    "dateTimeIssued": ("dateTimeIssued",),
    "dateTimeReceived": ("dateTimeReceived",),
    "dateTimeValidated": ("dateTimeValidated",),
    # money
    "totalSales": ("totalSales", "total", "netAmount", "totalPayableAmount"),
    "totalExcludingTax": ("totalExcludingTax",),
    "totalDiscount": ("totalDiscount",),
    "totalNetAmount": ("totalNetAmount", "netAmount"),
    "totalPayableAmount": ("totalPayableAmount", "total"),
    "documentCurrency": ("documentCurrency", "currency", "currencyCode", "documentCurrencyCode"),
    # lifecycle
    "status": ("status",),
    "documentStatusReason": ("documentStatusReason",),
}

FIELD_DEFAULTS: dict[str, Any] = {
    "totalSales": 0,
    "totalExcludingTax": 0,
    "totalDiscount": 0,
    "totalNetAmount": 0,
    "totalPayableAmount": 0,
}


def first_present(raw: dict, sources: tuple[str, ...], default: Any = None) -> Any:
    """Return the value of the first source key that is neither missing, None nor an empty string."""
    for source in sources:
        value = raw.get(source)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return default


def canonical_fields(raw: dict) -> dict[str, Any]:
    return {
        field: first_present(raw, sources, FIELD_DEFAULTS.get(field))
        for field, sources in FIELD_PRIORITIES.items()
    }


def normalize_document(raw: dict) -> SyncedDocument:
    """Build a SyncedDocument from one item of a registry listing or submission summary.

    Raises:
        InvalidSyncInputError: If the item is not a mapping or cannot form a valid document.
    """
    if not isinstance(raw, dict):
        raise InvalidSyncInputError(f"Registry document must be an object, got {type(raw).__name__}")
    try:
        return SyncedDocument(**canonical_fields(raw))
    except ValidationError as e:
        raise InvalidSyncInputError(f"Registry document {raw.get('uuid')!r} is malformed: {e}") from e
