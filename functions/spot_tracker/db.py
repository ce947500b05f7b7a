"""
Event store for SQLAlchemy-backed databases and an in-memory test implementation.

The store owns three tables: the parsed feed events, an audit log of raw
feed calls (pruned to the newest ``api_call_retention`` rows) and a single
"last backup attempt" marker. Every write commits before returning.
"""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from spot_tracker.clock import Clock, SystemClock
from spot_tracker.errors import StoreError
from spot_tracker.types import (
    ApiCallInfo,
    ApiCallRecord,
    BackupAttempt,
    Event,
    MessageType,
)

DEFAULT_API_CALL_RETENTION = 100
BACKUP_ATTEMPT_RETENTION = 1


class EventStore(Protocol):
    """Interface for event and audit storage."""

    def upsert_events(self, events: list[Event]) -> None:
        ...

    def query_events(
        self,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Event]:
        ...

    def record_api_call(self, request, response, status_code: int) -> None:
        ...

    def last_api_call_info(self) -> ApiCallInfo:
        ...

    def last_api_call_payload(self) -> Optional[ApiCallRecord]:
        ...

    def record_backup_attempt(self, error: Optional[str] = None) -> None:
        ...

    def last_backup_attempt(self) -> Optional[BackupAttempt]:
        ...

    def last_backup_time(self) -> Optional[datetime]:
        ...

    def reset(self) -> None:
        ...

    def ping(self) -> None:
        ...

    def database_path(self) -> Optional[str]:
        ...


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _in_range(
    event: Event, start_time: Optional[int], end_time: Optional[int]
) -> bool:
    if start_time is not None and event.unix_time < start_time:
        return False
    if end_time is not None and event.unix_time > end_time:
        return False
    return True


def _check_event(event: Event) -> None:
    missing = [
        name
        for name in ("id", "message_type", "unix_time", "latitude", "longitude")
        if getattr(event, name) is None
    ]
    if missing:
        raise StoreError(f"Event {event.id!r} is missing {', '.join(missing)}")


class InMemoryEventStore:
    """Simple in-memory store for development and tests."""

    def __init__(
        self,
        clock: Clock | None = None,
        api_call_retention: int = DEFAULT_API_CALL_RETENTION,
    ):
        self.clock = clock or SystemClock()
        self.api_call_retention = api_call_retention
        self.events: dict[str, Event] = {}
        self.api_calls: list[tuple[int, ApiCallRecord]] = []
        self.backup_attempts: list[tuple[int, BackupAttempt]] = []
        self._seq = itertools.count(1)

    def upsert_events(self, events: list[Event]) -> None:
        staged = dict(self.events)
        for event in events:
            _check_event(event)
            staged[event.id] = event
        self.events = staged

    def query_events(
        self,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Event]:
        matches = [
            e for e in self.events.values() if _in_range(e, start_time, end_time)
        ]
        matches.sort(key=lambda e: e.unix_time, reverse=True)
        if limit is not None and limit > 0:
            return matches[:limit]
        return matches

    def record_api_call(self, request, response, status_code: int) -> None:
        record = ApiCallRecord(
            request_payload=request,
            response_payload=response,
            status_code=status_code,
            created_at=self.clock.now(),
        )
        self.api_calls.append((next(self._seq), record))
        self.api_calls = self._newest(self.api_calls, self.api_call_retention)

    def last_api_call_info(self) -> ApiCallInfo:
        latest = self.last_api_call_payload()
        if latest is None:
            return ApiCallInfo()
        return ApiCallInfo(time=latest.created_at, status=latest.status_code)

    def last_api_call_payload(self) -> Optional[ApiCallRecord]:
        newest = self._newest(self.api_calls, 1)
        return newest[0][1] if newest else None

    def record_backup_attempt(self, error: Optional[str] = None) -> None:
        attempt = BackupAttempt(created_at=self.clock.now(), error=error)
        self.backup_attempts.append((next(self._seq), attempt))
        self.backup_attempts = self._newest(
            self.backup_attempts, BACKUP_ATTEMPT_RETENTION
        )

    def last_backup_attempt(self) -> Optional[BackupAttempt]:
        newest = self._newest(self.backup_attempts, 1)
        return newest[0][1] if newest else None

    def last_backup_time(self) -> Optional[datetime]:
        attempt = self.last_backup_attempt()
        return attempt.created_at if attempt else None

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.events.clear()
        self.api_calls.clear()
        self.backup_attempts.clear()

    def ping(self) -> None:
        return None

    def database_path(self) -> Optional[str]:
        return None

    @staticmethod
    def _newest(rows: list, keep: int) -> list:
        # Newest first by (created_at, insertion sequence).
        ordered = sorted(rows, key=lambda r: (r[1].created_at, r[0]), reverse=True)
        return ordered[:keep]


class SqlEventStore:
    """
    SQLAlchemy-backed store. Defaults to SQLite but accepts any database URL.
    """

    def __init__(
        self,
        url: str,
        clock: Clock | None = None,
        api_call_retention: int = DEFAULT_API_CALL_RETENTION,
    ):
        self.clock = clock or SystemClock()
        self.api_call_retention = api_call_retention
        engine_kwargs: dict = {"future": True}
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, otherwise every thread sees its own empty database.
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        self.engine = create_engine(url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"Could not initialize database: {exc}") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def _to_event(self, row: "EventRow") -> Event:
        return Event(
            id=row.id,
            message_type=MessageType(row.message_type),
            message_content=row.message_content,
            unix_time=row.unix_time,
            latitude=row.latitude,
            longitude=row.longitude,
        )

    def upsert_events(self, events: list[Event]) -> None:
        now = self.clock.now().timestamp()
        with self._session() as session:
            for event in events:
                session.merge(
                    EventRow(
                        id=event.id,
                        message_type=event.message_type.value,
                        message_content=event.message_content,
                        unix_time=event.unix_time,
                        latitude=event.latitude,
                        longitude=event.longitude,
                        updated_at=now,
                    )
                )
            session.commit()

    def query_events(
        self,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Event]:
        stmt = select(EventRow)
        if start_time is not None:
            stmt = stmt.where(EventRow.unix_time >= start_time)
        if end_time is not None:
            stmt = stmt.where(EventRow.unix_time <= end_time)
        stmt = stmt.order_by(EventRow.unix_time.desc())
        if limit is not None and limit > 0:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [self._to_event(row) for row in session.execute(stmt).scalars()]

    def record_api_call(self, request, response, status_code: int) -> None:
        with self._session() as session:
            session.add(
                ApiCallRow(
                    request_json=request,
                    response_json=response,
                    status_code=status_code,
                    created_at=self.clock.now().timestamp(),
                )
            )
            session.flush()
            keep = (
                select(ApiCallRow.id)
                .order_by(ApiCallRow.created_at.desc(), ApiCallRow.id.desc())
                .limit(self.api_call_retention)
            )
            session.execute(
                delete(ApiCallRow)
                .where(ApiCallRow.id.not_in(keep))
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def _latest_api_call(self, session: Session) -> Optional["ApiCallRow"]:
        stmt = (
            select(ApiCallRow)
            .order_by(ApiCallRow.created_at.desc(), ApiCallRow.id.desc())
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def last_api_call_info(self) -> ApiCallInfo:
        with self._session() as session:
            row = self._latest_api_call(session)
            if not row:
                return ApiCallInfo()
            return ApiCallInfo(
                time=_from_epoch(row.created_at), status=row.status_code
            )

    def last_api_call_payload(self) -> Optional[ApiCallRecord]:
        with self._session() as session:
            row = self._latest_api_call(session)
            if not row:
                return None
            return ApiCallRecord(
                request_payload=row.request_json,
                response_payload=row.response_json,
                status_code=row.status_code,
                created_at=_from_epoch(row.created_at),
            )

    def record_backup_attempt(self, error: Optional[str] = None) -> None:
        with self._session() as session:
            session.add(
                BackupAttemptRow(error=error, created_at=self.clock.now().timestamp())
            )
            session.flush()
            keep = (
                select(BackupAttemptRow.id)
                .order_by(BackupAttemptRow.created_at.desc(), BackupAttemptRow.id.desc())
                .limit(BACKUP_ATTEMPT_RETENTION)
            )
            session.execute(
                delete(BackupAttemptRow)
                .where(BackupAttemptRow.id.not_in(keep))
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def last_backup_attempt(self) -> Optional[BackupAttempt]:
        stmt = (
            select(BackupAttemptRow)
            .order_by(BackupAttemptRow.created_at.desc(), BackupAttemptRow.id.desc())
            .limit(1)
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return BackupAttempt(created_at=_from_epoch(row.created_at), error=row.error)

    def last_backup_time(self) -> Optional[datetime]:
        attempt = self.last_backup_attempt()
        return attempt.created_at if attempt else None

    def count_api_calls(self) -> int:
        with self._session() as session:
            return len(session.execute(select(ApiCallRow.id)).all())

    def count_backup_attempts(self) -> int:
        with self._session() as session:
            return len(session.execute(select(BackupAttemptRow.id)).all())

    def reset(self) -> None:
        try:
            Base.metadata.drop_all(self.engine)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"Database reset failed: {exc}") from exc

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def database_path(self) -> Optional[str]:
        """Path of the SQLite database file, or None for other backends."""
        url = self.engine.url
        if url.get_backend_name() != "sqlite":
            return None
        if not url.database or url.database == ":memory:":
            return None
        return url.database


Base = declarative_base()


class EventRow(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True)
    message_type = Column(String, nullable=False)
    message_content = Column(Text, nullable=True)
    unix_time = Column(Integer, nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ApiCallRow(Base):
    __tablename__ = "api_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_json = Column(JSON, nullable=False)
    response_json = Column(JSON, nullable=True)
    status_code = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False, index=True)


class BackupAttemptRow(Base):
    __tablename__ = "backup_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    error = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
