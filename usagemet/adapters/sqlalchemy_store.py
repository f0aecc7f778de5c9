"""SQLAlchemy event store adapter for UsageMet."""

import logging
from typing import Callable, Iterator, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    delete,
    insert,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..errors import StoreUnavailable
from ..models import Event, event_from_dict, event_to_dict, now_ms
from ..ports import Dimension

logger = logging.getLogger(__name__)

metadata = MetaData()

usage_events = Table(
    "usage_events",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("timestamp", BigInteger, nullable=False, index=True),
    Column("expires_at", BigInteger, nullable=False, index=True),
    Column("type", String(32), nullable=False),
    Column("user_id", String(255)),
    Column("command", String(255)),
    Column("success", Boolean),
    Column("duration_ms", Float),
    Column("error_type", String(255)),
    Column("error_message", Text),
    Column("conversation_id", String(255)),
    Column("connection_id", String(255)),
    Column("phase", String(32)),
    Column("step_count", Integer),
    Column("metadata_json", JSON, nullable=False),
    Index("ix_usage_events_type_timestamp", "type", "timestamp"),
    Index("ix_usage_events_command_timestamp", "command", "timestamp"),
    Index("ix_usage_events_user_id_timestamp", "user_id", "timestamp"),
)


def create_schema(engine: Engine) -> None:
    """Create the ``usage_events`` table and its indexes if missing."""
    metadata.create_all(engine)


class SQLAlchemyEventStore:
    """Stores events in one relational table and scans it with keyset pagination.

    Every operation opens its own session from ``session_factory``, so the
    store can be shared by concurrent ingestion workers.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], int] = now_ms,
        page_size: int = 500,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.page_size = page_size

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SQLAlchemyEventStore":
        engine = create_engine(database_url)
        create_schema(engine)
        return cls(sessionmaker(bind=engine), **kwargs)

    def append(self, event: Event) -> None:
        row = event_to_dict(event)
        row["metadata_json"] = row.pop("metadata")
        try:
            with self.session_factory() as session:
                if self._exists(session, event.id):
                    return
                session.execute(insert(usage_events).values(**row))
                session.commit()
        except IntegrityError as exc:
            # Lost an insert race against a duplicate delivery of the same id.
            if self._exists_safely(event.id):
                return
            raise StoreUnavailable(f"event {event.id} rejected by the database") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"failed to append event {event.id}") from exc

    def scan_by_time_range(self, start: int, end: int) -> Iterator[Event]:
        return self._scan(start, end)

    def scan_by_dimension(
        self,
        dimension: Dimension,
        value: str,
        start: int,
        end: int,
    ) -> Iterator[Event]:
        column = usage_events.c[Dimension(dimension).value]
        return self._scan(start, end, column == getattr(value, "value", value))

    def purge_expired(self, now: Optional[int] = None) -> int:
        if now is None:
            now = self.clock()
        try:
            with self.session_factory() as session:
                result = session.execute(delete(usage_events).where(usage_events.c.expires_at <= now))
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable("failed to purge expired events") from exc
        removed = result.rowcount or 0
        logger.info("Purged %d expired usage events", removed)
        return removed

    def _scan(self, start: int, end: int, clause=None) -> Iterator[Event]:
        now = self.clock()
        table = usage_events
        last = None
        while True:
            query = select(table).where(
                table.c.timestamp >= start,
                table.c.timestamp <= end,
                table.c.expires_at > now,
            )
            if clause is not None:
                query = query.where(clause)
            if last is not None:
                last_timestamp, last_id = last
                query = query.where(
                    or_(
                        table.c.timestamp > last_timestamp,
                        and_(table.c.timestamp == last_timestamp, table.c.id > last_id),
                    )
                )
            query = query.order_by(table.c.timestamp, table.c.id).limit(self.page_size)

            try:
                with self.session_factory() as session:
                    rows = session.execute(query).fetchall()
            except SQLAlchemyError as exc:
                raise StoreUnavailable("event scan failed") from exc

            for row in rows:
                yield _row_to_event(row)

            if len(rows) < self.page_size:
                return
            last = (rows[-1].timestamp, rows[-1].id)

    def _exists(self, session, event_id: str) -> bool:
        found = session.execute(
            select(usage_events.c.id).where(usage_events.c.id == event_id)
        ).first()
        return found is not None

    def _exists_safely(self, event_id: str) -> bool:
        try:
            with self.session_factory() as session:
                return self._exists(session, event_id)
        except SQLAlchemyError:
            return False


def _row_to_event(row) -> Event:
    data = dict(row._mapping)
    data["metadata"] = data.pop("metadata_json") or {}
    return event_from_dict(data)
