from pydantic import BaseModel

from shared.models.document import SyncedDocument
from shared.models.sync import SyncResult, SyncSource, SyncStats


class SyncResponse(BaseModel):
    success: bool = True
    source: SyncSource
    cached: bool
    documentCount: int
    documents: list[SyncedDocument]
    stats: SyncStats

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResponse":
        return cls(
            source=result.source,
            cached=result.cached,
            documentCount=len(result.documents),
            documents=result.documents,
            stats=result.stats,
        )


class TotalResponse(BaseModel):
    total: int
