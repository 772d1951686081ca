"""SQLAlchemy-backed document store.

SQLAlchemy's engine is synchronous here; every call runs in a worker thread so the
event loop never blocks on the database.
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy import create_engine, func, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from shared.errors import TransientStoreConflict
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import TIMESTAMP_FIELDS, SyncedDocument
from shared.store.DocumentStoreInterface import DocumentStoreInterface
from shared.store.sqlalchemy.models import Base, InboundStatus

# serialization failure, deadlock, unique violation (concurrent insert of the same uuid)
TRANSIENT_SQLSTATES = {"40001", "40P01", "23505"}
TRANSIENT_MARKERS = (
    "deadlock",
    "write conflict",
    "could not serialize",
    "database is locked",
    "unique constraint failed",
    "duplicate key",
)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_transient_conflict(error: DBAPIError) -> bool:
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    message = str(orig or error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


class DocumentStoreSQLAlchemy(DocumentStoreInterface):
    def __init__(self, helper_config: HelperConfig, database_url: str | None = None):
        self.logging = helper_config.get_logger()
        self._database_url = database_url or helper_config.get_string_val("STORE_DATABASE_URL")
        self.lock_timeout = helper_config.get_number_val("STORE_LOCK_TIMEOUT", default=10)
        self.statement_timeout = helper_config.get_number_val("STORE_STATEMENT_TIMEOUT", default=30)

        if self._database_url.startswith("sqlite"):
            self._engine = create_engine(
                self._database_url,
                connect_args={"timeout": self.lock_timeout, "check_same_thread": False},
            )
        else:
            self._engine = create_engine(
                self._database_url,
                pool_timeout=self.lock_timeout,
                pool_pre_ping=True,
            )
        self._session_factory = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        await asyncio.to_thread(Base.metadata.create_all, self._engine)

    async def close(self) -> None:
        await asyncio.to_thread(self._engine.dispose)

    ##########################################
    ################ READS ###################
    ##########################################

    def _to_document(self, row: InboundStatus) -> SyncedDocument:
        return SyncedDocument.model_validate(row, from_attributes=True)

    async def find_recent(self, limit: int) -> list[SyncedDocument]:
        def _query() -> list[SyncedDocument]:
            with self._session_factory() as session:
                rows = (
                    session.query(InboundStatus)
                    .order_by(InboundStatus.dateTimeReceived.desc().nulls_last(), InboundStatus.uuid)
                    .limit(limit)
                    .all()
                )
                return [self._to_document(row) for row in rows]

        return await asyncio.to_thread(_query)

    async def find_most_recent_sync_timestamp(self) -> datetime | None:
        def _query() -> datetime | None:
            sync_ts = func.coalesce(InboundStatus.dateTimeValidated, InboundStatus.dateTimeReceived)
            with self._session_factory() as session:
                row = (
                    session.query(InboundStatus)
                    .filter(sync_ts.isnot(None))
                    .order_by(sync_ts.desc())
                    .first()
                )
                return self._to_document(row).sync_timestamp() if row else None

        return await asyncio.to_thread(_query)

    async def find_last_sync_date(self) -> datetime | None:
        def _query() -> datetime | None:
            with self._session_factory() as session:
                return _as_utc(session.query(func.max(InboundStatus.last_sync_date)).scalar())

        return await asyncio.to_thread(_query)

    async def count_all(self) -> int:
        def _query() -> int:
            with self._session_factory() as session:
                return session.query(func.count(InboundStatus.uuid)).scalar() or 0

        return await asyncio.to_thread(_query)

    ##########################################
    ################ WRITES ##################
    ##########################################

    def _begin_bounded(self, session: Session) -> None:
        """Pin the transaction to read-committed and cap how long it may wait on locks."""
        if self.dialect == "sqlite":
            # sqlite serialises writers itself; the busy timeout is set on connect
            return
        session.connection(execution_options={"isolation_level": "READ COMMITTED"})
        if self.dialect == "postgresql":
            session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout * 1000)}"))
            session.execute(text(f"SET LOCAL statement_timeout = {int(self.statement_timeout * 1000)}"))

    def _upsert(self, doc: SyncedDocument) -> None:
        values = doc.model_dump()
        for field in TIMESTAMP_FIELDS:
            values[field] = _as_utc(values.get(field))

        with self._session_factory() as session:
            try:
                with session.begin():
                    self._begin_bounded(session)
                    row = session.get(InboundStatus, doc.uuid)
                    if row is None:
                        session.add(InboundStatus(**values))
                    else:
                        for key, value in values.items():
                            setattr(row, key, value)
            except DBAPIError as e:
                if is_transient_conflict(e):
                    raise TransientStoreConflict(f"Conflict while upserting document {doc.uuid}: {e.orig}") from e
                raise

    async def upsert_by_uuid(self, doc: SyncedDocument) -> None:
        await asyncio.to_thread(self._upsert, doc)
