"""
Event store — append-only behavioral event log over one of three tiers.

  postgres  DATABASE_URL is set: pooled connection to the networked database
  sqlite    local single-file database under EVENTS_DATA_DIR
  memory    process-local list, lost on restart

The tier is chosen once per process by build_event_backend() and every
write/query result carries its ``persistence`` tag, so callers can tell a
durable write from an at-risk one.

Timestamps are stored in canonical UTC form ("YYYY-MM-DDTHH:MM:SS", see
canonical_timestamp), so the SQL tiers can bound them by string comparison
against "YYYY-MM-DDT00:00:00" .. "YYYY-MM-DDT23:59:59" and still agree with
the filter engine, which the memory tier uses directly. A timestamp that does
not parse is stored verbatim and never satisfies a date bound.
"""
import logging
import os
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import case, distinct, func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError

from leadfunnel.config import CONVERSION_EVENT_TYPES, EVENTS_DB_FILENAME, EVENTS_DEFAULT_LIMIT
from leadfunnel.database import Base, build_engine, build_session_factory
from leadfunnel.errors import StorageError
from leadfunnel.models.event import (
    STORED_TIMESTAMP_PATTERN, AppendResult, Event, EventInput, EventRow, canonical_timestamp, utc_now_iso,
)
from leadfunnel.models.filters import FilterSpec
from leadfunnel.services import filters
from leadfunnel.services.ledger import parse_date

logger = logging.getLogger('services.event_store')

POSTGRES = 'postgres'
SQLITE = 'sqlite'
MEMORY = 'memory'
BACKEND_CHOICES = ('auto', POSTGRES, SQLITE, MEMORY)


@dataclass(frozen=True)
class FunnelCounts:
    inquiries: int
    converted: int
    payments: int


def is_conversion(event_type) -> bool:
    return bool(event_type) and event_type.lower() in CONVERSION_EVENT_TYPES


def event_criteria(spec: FilterSpec) -> FilterSpec:
    """The part of a FilterSpec the event store honors: type, inquiry and dates."""
    return FilterSpec(start=spec.start, end=spec.end, event_type=spec.event_type, inquiry_id=spec.inquiry_id)


def _clamp_limit(limit):
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return EVENTS_DEFAULT_LIMIT
    return limit if limit > 0 else EVENTS_DEFAULT_LIMIT


class EventBackend:
    """Write/query contract shared by all tiers."""

    persistence = None

    @property
    def durable(self):
        return self.persistence != MEMORY

    def append(self, event: EventInput) -> AppendResult:
        raise NotImplementedError

    def query(self, spec: FilterSpec, limit=EVENTS_DEFAULT_LIMIT) -> List[Event]:
        raise NotImplementedError

    def funnel_counts(self, spec: FilterSpec) -> FunnelCounts:
        raise NotImplementedError

    def daily_distinct_inquiries(self, spec: FilterSpec, conversions_only=False) -> Dict[str, int]:
        raise NotImplementedError

    def close(self):
        pass


# ── SQL tiers (postgres / sqlite) ────────────────────────────────────────────

class SQLEventBackend(EventBackend):
    def __init__(self, engine, persistence):
        self.engine = engine
        self.persistence = persistence
        self.Session = build_session_factory(engine)
        self.ensure_schema()

    def ensure_schema(self):
        """CREATE TABLE / INDEX IF NOT EXISTS — runs on every open."""
        try:
            Base.metadata.create_all(self.engine, tables=[EventRow.__table__])
            for index in EventRow.__table__.indexes:
                index.create(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            logger.error("Failed to create events schema on %s: %s", self.persistence, e)
            raise StorageError(f'Event store ({self.persistence}) unavailable') from e

    @staticmethod
    def _conditions(spec):
        conditions = []
        if spec.event_type:
            conditions.append(EventRow.event_type == spec.event_type)
        if spec.inquiry_id:
            conditions.append(EventRow.inquiry_id == spec.inquiry_id)
        if spec.has_date_bounds:
            conditions.append(EventRow.timestamp.like(STORED_TIMESTAMP_PATTERN))
        if spec.start_iso:
            conditions.append(EventRow.timestamp >= spec.start_iso)
        if spec.end_iso:
            conditions.append(EventRow.timestamp <= spec.end_iso)
        return conditions

    @staticmethod
    def _is_conversion_clause():
        return func.lower(EventRow.event_type).in_(sorted(CONVERSION_EVENT_TYPES))

    def append(self, event):
        now = utc_now_iso()
        session = self.Session()
        try:
            row = EventRow(
                event_type=event.event_type,
                inquiry_id=event.inquiry_id,
                session_id=event.session_id,
                course=event.course,
                timestamp=canonical_timestamp(event.timestamp or now),
                metadata_json=event.metadata,
                utm_source=event.utm_source,
                utm_medium=event.utm_medium,
                utm_campaign=event.utm_campaign,
                created_at=now,
            )
            session.add(row)
            session.commit()
            return AppendResult(id=row.id, persistence=self.persistence, durable=self.durable)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Failed to append %s event", event.event_type, exc_info=True)
            raise StorageError('Failed to record event') from e
        finally:
            session.close()

    def query(self, spec, limit=EVENTS_DEFAULT_LIMIT):
        stmt = (
            select(EventRow)
            .where(*self._conditions(spec))
            .order_by(EventRow.timestamp.desc(), EventRow.id.desc())
            .limit(_clamp_limit(limit))
        )
        session = self.Session()
        try:
            return [Event.from_row(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error("Event query failed", exc_info=True)
            raise StorageError('Failed to query events') from e
        finally:
            session.close()

    def funnel_counts(self, spec):
        conversion = self._is_conversion_clause()
        stmt = select(
            func.count(distinct(EventRow.inquiry_id)),
            func.count(distinct(case((conversion, EventRow.inquiry_id)))),
            func.coalesce(func.sum(case((conversion, 1), else_=0)), 0),
        ).where(EventRow.inquiry_id.isnot(None), *self._conditions(spec))

        session = self.Session()
        try:
            inquiries, converted, payments = session.execute(stmt).one()
        except SQLAlchemyError as e:
            logger.error("Funnel query failed", exc_info=True)
            raise StorageError('Failed to compute funnel') from e
        finally:
            session.close()
        return FunnelCounts(int(inquiries or 0), int(converted or 0), int(payments or 0))

    def daily_distinct_inquiries(self, spec, conversions_only=False):
        # Inline the substr() bounds so SELECT and GROUP BY render identically on Postgres
        day = func.substr(EventRow.timestamp, literal_column('1'), literal_column('10'))
        conditions = [EventRow.inquiry_id.isnot(None), *self._conditions(spec)]
        if conversions_only:
            conditions.append(self._is_conversion_clause())
        stmt = (
            select(day, func.count(distinct(EventRow.inquiry_id)))
            .where(*conditions)
            .group_by(day)
            .order_by(day)
        )

        session = self.Session()
        try:
            rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.error("Daily inquiry query failed", exc_info=True)
            raise StorageError('Failed to compute daily inquiries') from e
        finally:
            session.close()
        return {d: int(n) for d, n in rows if d}

    def close(self):
        self.engine.dispose()


# ── Volatile tier ────────────────────────────────────────────────────────────

class MemoryEventBackend(EventBackend):
    """In-process list. Not shared across workers, gone on restart."""

    persistence = MEMORY

    def __init__(self):
        self._events = []
        self._next_id = 1
        self._lock = threading.Lock()

    def append(self, event):
        now = utc_now_iso()
        timestamp = canonical_timestamp(event.timestamp or now)
        with self._lock:
            stored = Event(
                id=self._next_id,
                event_type=event.event_type,
                inquiry_id=event.inquiry_id,
                session_id=event.session_id,
                course=event.course,
                timestamp=timestamp,
                metadata=event.metadata,
                utm_source=event.utm_source,
                utm_medium=event.utm_medium,
                utm_campaign=event.utm_campaign,
                created_at=now,
                parsed_date=parse_date(timestamp),
            )
            self._events.append(stored)
            self._next_id += 1
        return AppendResult(id=stored.id, persistence=self.persistence, durable=False)

    def _matching(self, spec):
        with self._lock:
            events = list(self._events)
        return filters.apply(events, event_criteria(spec))

    def query(self, spec, limit=EVENTS_DEFAULT_LIMIT):
        rows = sorted(self._matching(spec), key=lambda e: (e.timestamp or '', e.id), reverse=True)
        return rows[:_clamp_limit(limit)]

    def funnel_counts(self, spec):
        inquiries, converted, payments = set(), set(), 0
        for e in self._matching(spec):
            if e.inquiry_id is None:
                continue
            inquiries.add(e.inquiry_id)
            if is_conversion(e.event_type):
                converted.add(e.inquiry_id)
                payments += 1
        return FunnelCounts(len(inquiries), len(converted), payments)

    def daily_distinct_inquiries(self, spec, conversions_only=False):
        per_day = defaultdict(set)
        for e in self._matching(spec):
            if e.inquiry_id is None or not e.timestamp:
                continue
            if conversions_only and not is_conversion(e.event_type):
                continue
            per_day[e.timestamp[:10]].add(e.inquiry_id)
        return {day: len(ids) for day, ids in sorted(per_day.items())}


# ── Tier selection ───────────────────────────────────────────────────────────

def _open_sql(url, persistence):
    try:
        engine = build_engine(url)
    except SQLAlchemyError as e:
        logger.error("Invalid event store URL for %s tier: %s", persistence, e)
        raise StorageError(f'Event store ({persistence}) misconfigured') from e
    try:
        return SQLEventBackend(engine, persistence)
    except StorageError:
        engine.dispose()
        raise


def _open_sqlite(data_dir) -> Optional[SQLEventBackend]:
    try:
        os.makedirs(data_dir, exist_ok=True)
    except OSError as e:
        logger.error("Events data dir %s unusable: %s", data_dir, e)
        return None
    path = os.path.join(data_dir, EVENTS_DB_FILENAME)
    try:
        return _open_sql(f'sqlite:///{path}', SQLITE)
    except StorageError:
        return None


def build_event_backend(config) -> EventBackend:
    """
    Pick the event store tier once at startup.

    EVENTS_BACKEND=auto walks postgres -> sqlite -> memory, stopping at the
    first tier that opens. An explicit choice is honored, but a tier that
    fails to open still falls through to the next one with an error logged.
    """
    choice = (config.events_backend or 'auto').lower()
    if choice not in BACKEND_CHOICES:
        raise ValueError(f"EVENTS_BACKEND must be one of {', '.join(BACKEND_CHOICES)}, got '{choice}'")

    if choice in ('auto', POSTGRES):
        if config.database_url:
            try:
                backend = _open_sql(config.database_url, POSTGRES)
                logger.info("Event store: durable tier (%s)", backend.engine.dialect.name)
                return backend
            except StorageError:
                logger.error("Durable event store unavailable, falling back to local storage")
        elif choice == POSTGRES:
            raise ValueError('EVENTS_BACKEND=postgres requires DATABASE_URL')

    if choice != MEMORY:
        backend = _open_sqlite(config.events_data_dir)
        if backend is not None:
            logger.info("Event store: embedded tier (%s)", config.events_data_dir)
            return backend
        logger.error("Embedded event store unavailable")

    logger.warning("Event store: volatile in-memory tier — events are lost on restart")
    return MemoryEventBackend()
