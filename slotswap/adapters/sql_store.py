"""
SQLAlchemy-backed storage for slots and swap requests.

Any SQLAlchemy URL works. SQLite transactions start with ``BEGIN IMMEDIATE``
so that writers queue on the database lock; other backends run at
SERIALIZABLE isolation. Errors the database raises because of a concurrent
writer (locks, serialization failures, constraint violations) are reported
as ``ConflictError`` and never retried here.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import pendulum
import sqlalchemy
from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from ..domain.exceptions import ConflictError
from ..domain.models import Slot, SlotStatus, SwapRequest, SwapStatus, as_datetime
from ..services.storage import TransactionalStorage

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """Stores datetimes as naive UTC and loads them back as pendulum UTC."""

    impl = sqlalchemy.DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_datetime(value).in_timezone("UTC").naive()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return pendulum.instance(value, tz=pendulum.UTC)


metadata = sqlalchemy.MetaData()

slots = sqlalchemy.Table(
    "slots",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(32), primary_key=True),
    sqlalchemy.Column("owner_id", sqlalchemy.String, nullable=False, index=True),
    sqlalchemy.Column("title", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("start_time", UTCDateTime, nullable=False, index=True),
    sqlalchemy.Column("end_time", UTCDateTime, nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String(16), nullable=False, index=True),
    sqlalchemy.Column("created_at", UTCDateTime),
    sqlalchemy.Column("updated_at", UTCDateTime),
)

# Slot ids are plain columns: a resolved request keeps its history after
# either slot is deleted by its (new) owner.
swap_requests = sqlalchemy.Table(
    "swap_requests",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(32), primary_key=True),
    sqlalchemy.Column("requester_id", sqlalchemy.String, nullable=False, index=True),
    sqlalchemy.Column("owner_id", sqlalchemy.String, nullable=False, index=True),
    sqlalchemy.Column("offered_slot_id", sqlalchemy.String(32), nullable=False, index=True),
    sqlalchemy.Column("requested_slot_id", sqlalchemy.String(32), nullable=False, index=True),
    sqlalchemy.Column("status", sqlalchemy.String(16), nullable=False, index=True),
    sqlalchemy.Column("created_at", UTCDateTime, nullable=False, index=True),
    sqlalchemy.Column("updated_at", UTCDateTime),
)


def _execute(connection: Connection, statement):
    try:
        return connection.execute(statement)
    except DBAPIError as exc:
        logger.warning("Statement rejected by the database: %s", exc.orig)
        raise ConflictError("The store rejected a concurrent change; try again") from exc


class SqlSlotRepository:
    def __init__(self, connection: Connection):
        self._connection = connection

    def get(self, slot_id: str) -> Optional[Slot]:
        row = _execute(self._connection, slots.select().where(slots.c.id == slot_id)).first()
        return _row_to_slot(row) if row else None

    def add(self, slot: Slot) -> None:
        _execute(self._connection, slots.insert().values(id=slot.id, **_slot_values(slot)))

    def update(self, slot: Slot, expected_status: SlotStatus) -> None:
        statement = (
            slots.update()
            .where(slots.c.id == slot.id, slots.c.status == expected_status.value)
            .values(**_slot_values(slot))
        )
        if _execute(self._connection, statement).rowcount != 1:
            raise ConflictError(f"Slot {slot.id} was modified concurrently")

    def delete(self, slot_id: str, expected_status: SlotStatus) -> None:
        statement = slots.delete().where(
            slots.c.id == slot_id,
            slots.c.status == expected_status.value,
        )
        if _execute(self._connection, statement).rowcount != 1:
            raise ConflictError(f"Slot {slot_id} was modified concurrently")

    def list_by_owner(self, owner_id: str) -> List[Slot]:
        return self._fetch(slots.select().where(slots.c.owner_id == owner_id))

    def list_by_status(
        self,
        status: SlotStatus,
        excluding_owner_id: Optional[str] = None,
    ) -> List[Slot]:
        query = slots.select().where(slots.c.status == status.value)
        if excluding_owner_id is not None:
            query = query.where(slots.c.owner_id != excluding_owner_id)
        return self._fetch(query)

    def _fetch(self, query) -> List[Slot]:
        rows = _execute(self._connection, query.order_by(slots.c.start_time, slots.c.id))
        return [_row_to_slot(row) for row in rows]


class SqlSwapRequestRepository:
    def __init__(self, connection: Connection):
        self._connection = connection

    def get(self, request_id: str) -> Optional[SwapRequest]:
        query = swap_requests.select().where(swap_requests.c.id == request_id)
        row = _execute(self._connection, query).first()
        return _row_to_request(row) if row else None

    def add(self, request: SwapRequest) -> None:
        _execute(
            self._connection,
            swap_requests.insert().values(id=request.id, **_request_values(request)),
        )

    def update(self, request: SwapRequest, expected_status: SwapStatus) -> None:
        statement = (
            swap_requests.update()
            .where(
                swap_requests.c.id == request.id,
                swap_requests.c.status == expected_status.value,
            )
            .values(**_request_values(request))
        )
        if _execute(self._connection, statement).rowcount != 1:
            raise ConflictError(f"Swap request {request.id} was modified concurrently")

    def list_by_owner(self, owner_id: str) -> List[SwapRequest]:
        return self._fetch(swap_requests.select().where(swap_requests.c.owner_id == owner_id))

    def list_by_requester(self, requester_id: str) -> List[SwapRequest]:
        return self._fetch(
            swap_requests.select().where(swap_requests.c.requester_id == requester_id)
        )

    def _fetch(self, query) -> List[SwapRequest]:
        rows = _execute(self._connection, query.order_by(sqlalchemy.desc(swap_requests.c.created_at)))
        return [_row_to_request(row) for row in rows]


class SqlTransaction:
    """
    One database transaction on a dedicated connection.

    ``release`` runs once the connection is back in the pool, whether the
    transaction committed or aborted.
    """

    def __init__(self, connection: Connection, release: Optional[Callable[[], None]] = None):
        self._connection = connection
        self._release = release
        self._transaction = connection.begin()
        self.slots = SqlSlotRepository(connection)
        self.requests = SqlSwapRequestRepository(connection)

    def commit(self) -> None:
        try:
            self._transaction.commit()
        except DBAPIError as exc:
            logger.warning("Commit rejected by the database: %s", exc.orig)
            raise ConflictError("The store rejected a concurrent change; try again") from exc
        finally:
            self._close()

    def abort(self) -> None:
        try:
            self._transaction.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        try:
            self._connection.close()
        finally:
            if self._release is not None:
                self._release()


class SqlStorage(TransactionalStorage):
    """
    Storage over a SQLAlchemy engine.

    Use ``SqlStorage.from_url`` to get an engine configured for the
    isolation this application needs. An engine whose pool hands every
    caller the same DBAPI connection (in-memory SQLite) cannot keep two
    transactions apart, so on such engines transactions take turns on a
    lock held from ``begin`` until commit or abort.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._shared_lock = threading.Lock() if isinstance(engine.pool, StaticPool) else None

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlStorage":
        url = sqlalchemy.engine.make_url(database_url)

        if url.get_backend_name() == "sqlite":
            options = {"echo": echo}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every checkout sees an empty database
                options.update(
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            engine = sqlalchemy.create_engine(url, **options)
            _use_immediate_transactions(engine)
        else:
            engine = sqlalchemy.create_engine(url, echo=echo, isolation_level="SERIALIZABLE")

        logger.debug("Created %s engine for %s", engine.dialect.name, url.render_as_string(hide_password=True))
        return cls(engine)

    def create_schema(self) -> None:
        """Create missing tables."""
        self._acquire()
        try:
            metadata.create_all(self.engine)
        finally:
            self._release()
        logger.debug("Schema ready on %s", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()

    def begin(self) -> SqlTransaction:
        self._acquire()
        connection = None
        try:
            connection = self.engine.connect()
            return SqlTransaction(connection, release=self._release)
        except DBAPIError as exc:
            self._discard(connection)
            logger.warning("Could not open a transaction: %s", exc.orig)
            raise ConflictError("The store is busy with a concurrent change; try again") from exc
        except BaseException:
            self._discard(connection)
            raise

    def _discard(self, connection: Optional[Connection]) -> None:
        try:
            if connection is not None:
                connection.close()
        finally:
            self._release()

    def _acquire(self) -> None:
        if self._shared_lock is not None:
            self._shared_lock.acquire()

    def _release(self) -> None:
        if self._shared_lock is not None:
            self._shared_lock.release()


def _use_immediate_transactions(engine: Engine) -> None:
    """Let SQLAlchemy emit ``BEGIN IMMEDIATE`` instead of pysqlite's deferred BEGIN."""

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def _slot_values(slot: Slot) -> dict:
    return {
        "owner_id": slot.owner_id,
        "title": slot.title,
        "start_time": slot.start,
        "end_time": slot.end,
        "status": slot.status.value,
        "created_at": slot.created_at,
        "updated_at": slot.updated_at,
    }


def _row_to_slot(row) -> Slot:
    return Slot(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        start=row.start_time,
        end=row.end_time,
        status=SlotStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _request_values(request: SwapRequest) -> dict:
    return {
        "requester_id": request.requester_id,
        "owner_id": request.owner_id,
        "offered_slot_id": request.offered_slot_id,
        "requested_slot_id": request.requested_slot_id,
        "status": request.status.value,
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def _row_to_request(row) -> SwapRequest:
    return SwapRequest(
        id=row.id,
        requester_id=row.requester_id,
        owner_id=row.owner_id,
        offered_slot_id=row.offered_slot_id,
        requested_slot_id=row.requested_slot_id,
        status=SwapStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
