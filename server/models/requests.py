from pydantic import BaseModel, Field

from shared.models.sync import SyncMode


class SyncRequest(BaseModel):
    mode: SyncMode = SyncMode.INCREMENTAL
    maxPages: int | None = Field(default=None, ge=1, le=100)
    forceRefresh: bool = False
    ownerId: str | None = None
