"""Tests for leadfunnel.services.event_store — tiers, queries and funnel counts."""
import os
from unittest.mock import patch

import pytest
from sqlalchemy import inspect

from leadfunnel.config import EngineConfig
from leadfunnel.errors import StorageError
from leadfunnel.models.event import EventInput
from leadfunnel.models.filters import FilterSpec
from leadfunnel.services import filters
from leadfunnel.services.event_store import (
    MEMORY, SQLITE, FunnelCounts, MemoryEventBackend, SQLEventBackend,
    build_event_backend, event_criteria, is_conversion,
)


def _add(store, event_type, inquiry_id=None, timestamp=None, **extra):
    return store.append(EventInput(event_type=event_type, inquiry_id=inquiry_id, timestamp=timestamp, **extra))


class TestAppend:

    def test_assigns_increasing_ids(self, event_store):
        first = _add(event_store, 'inquiry', 'A1')
        second = _add(event_store, 'inquiry', 'A2')
        assert second.id > first.id

    def test_result_carries_persistence(self, event_store):
        result = _add(event_store, 'inquiry', 'A1')
        assert result.persistence == event_store.persistence
        assert result.durable is (event_store.persistence != MEMORY)

    def test_timestamp_defaults_to_ingestion_time(self, event_store):
        _add(event_store, 'inquiry', 'A1')
        [event] = event_store.query(FilterSpec())
        assert event.created_at.endswith('Z')
        assert event.timestamp == event.created_at[:19]

    def test_timestamp_stored_in_canonical_utc(self, event_store):
        _add(event_store, 'inquiry', 'A1', '2024-01-15T23:30:00-05:00')
        _add(event_store, 'inquiry', 'A2', 'yesterday')
        assert event_store.query(FilterSpec(inquiry_id='A1'))[0].timestamp == '2024-01-16T04:30:00'
        assert event_store.query(FilterSpec(inquiry_id='A2'))[0].timestamp == 'yesterday'

    def test_optional_fields_stored_as_null(self, event_store):
        _add(event_store, 'page_view')
        [event] = event_store.query(FilterSpec())
        assert event.inquiry_id is None
        assert event.session_id is None
        assert event.metadata is None

    def test_metadata_round_trips(self, event_store):
        event_input = EventInput.from_payload({'type': 'click', 'metadata': {'button': 'pay'}})
        event_store.append(event_input)
        [event] = event_store.query(FilterSpec())
        assert event.metadata_dict == {'button': 'pay'}


class TestQuery:

    @pytest.fixture
    def seeded(self, event_store):
        _add(event_store, 'inquiry', 'A1', '2024-01-15T10:00:00Z')
        _add(event_store, 'paid', 'A1', '2024-01-17T09:00:00Z')
        _add(event_store, 'inquiry', 'A2', '2024-01-16T08:00:00Z')
        _add(event_store, 'inquiry', 'A3', '2024-01-20T08:00:00Z')
        return event_store

    def test_newest_first(self, seeded):
        events = seeded.query(FilterSpec())
        assert [e.timestamp[:10] for e in events] == ['2024-01-20', '2024-01-17', '2024-01-16', '2024-01-15']

    def test_limit_applied_after_ordering(self, seeded):
        events = seeded.query(FilterSpec(), limit=2)
        assert [e.inquiry_id for e in events] == ['A3', 'A1']

    def test_invalid_limit_uses_default(self, seeded):
        assert len(seeded.query(FilterSpec(), limit=0)) == 4

    def test_filters_by_type_and_inquiry(self, seeded):
        assert len(seeded.query(FilterSpec(event_type='inquiry'))) == 3
        assert [e.event_type for e in seeded.query(FilterSpec(inquiry_id='A1'))] == ['paid', 'inquiry']

    def test_date_window_is_inclusive(self, seeded):
        events = seeded.query(FilterSpec(start='2024-01-16', end='2024-01-17'))
        assert sorted(e.inquiry_id for e in events) == ['A1', 'A2']

    def test_parsed_date_populated(self, seeded):
        [event] = seeded.query(FilterSpec(inquiry_id='A2'))
        assert event.parsed_date is not None
        assert event.parsed_date.day == 16


class TestAgreesWithFilterEngine:

    @pytest.fixture
    def mixed(self, event_store):
        _add(event_store, 'inquiry', 'A1', '2024-01-15T23:30:00-05:00')
        _add(event_store, 'inquiry', 'A2', '2024-01-15 10:00:00')
        _add(event_store, 'inquiry', 'A3', '2024-01-14T23:59:59Z')
        _add(event_store, 'inquiry', 'A4', 'yesterday')
        _add(event_store, 'inquiry', 'A5', '2024-01-16T00:00:00+01:00')
        return event_store

    @pytest.mark.parametrize('spec, expected', [
        (FilterSpec(end='2024-01-15'), {'A2', 'A3', 'A5'}),
        (FilterSpec(start='2024-01-15', end='2024-01-15'), {'A2', 'A5'}),
        (FilterSpec(start='2024-01-16'), {'A1'}),
        (FilterSpec(start='2024-01-01', course='PMP'), {'A1', 'A2', 'A3', 'A5'}),
    ])
    def test_query_matches_filter_apply(self, mixed, spec, expected):
        everything = mixed.query(FilterSpec())
        from_store = {e.inquiry_id for e in mixed.query(spec)}
        from_engine = {e.inquiry_id for e in filters.apply(everything, event_criteria(spec))}
        assert from_store == from_engine == expected

    def test_funnel_counts_use_utc_day(self, mixed):
        counts = mixed.funnel_counts(FilterSpec(start='2024-01-15', end='2024-01-15'))
        assert counts == FunnelCounts(inquiries=2, converted=0, payments=0)

    def test_unparseable_timestamp_fails_date_bounds(self, mixed):
        assert mixed.query(FilterSpec(start='2000-01-01', inquiry_id='A4')) == []
        assert len(mixed.query(FilterSpec(inquiry_id='A4'))) == 1


class TestFunnelCounts:

    def test_single_inquiry_converted(self, event_store):
        _add(event_store, 'inquiry', 'A1', '2024-01-15T10:00:00Z')
        _add(event_store, 'inquiry', 'A1', '2024-01-15T11:00:00Z')
        _add(event_store, 'paid', 'A1', '2024-01-15T12:00:00Z')
        assert event_store.funnel_counts(FilterSpec()) == FunnelCounts(inquiries=1, converted=1, payments=1)

    def test_conversion_types_case_insensitive(self, event_store):
        _add(event_store, 'inquiry', 'A1')
        _add(event_store, 'Payment_Success', 'A1')
        _add(event_store, 'inquiry', 'A2')
        _add(event_store, 'COMPLETED', 'A3')
        counts = event_store.funnel_counts(FilterSpec())
        assert counts == FunnelCounts(inquiries=3, converted=2, payments=2)

    def test_events_without_inquiry_ignored(self, event_store):
        _add(event_store, 'paid')
        _add(event_store, 'page_view')
        assert event_store.funnel_counts(FilterSpec()) == FunnelCounts(0, 0, 0)

    def test_repeat_payments_counted(self, event_store):
        _add(event_store, 'paid', 'A1')
        _add(event_store, 'payment', 'A1')
        assert event_store.funnel_counts(FilterSpec()) == FunnelCounts(inquiries=1, converted=1, payments=2)

    def test_respects_date_window(self, event_store):
        _add(event_store, 'inquiry', 'A1', '2024-01-15T10:00:00Z')
        _add(event_store, 'paid', 'A1', '2024-02-01T10:00:00Z')
        counts = event_store.funnel_counts(FilterSpec(end='2024-01-31'))
        assert counts == FunnelCounts(inquiries=1, converted=0, payments=0)


class TestDailyDistinctInquiries:

    @pytest.fixture
    def seeded(self, event_store):
        _add(event_store, 'inquiry', 'A1', '2024-01-15T08:00:00Z')
        _add(event_store, 'inquiry', 'A1', '2024-01-15T09:00:00Z')
        _add(event_store, 'inquiry', 'A2', '2024-01-16T09:00:00Z')
        _add(event_store, 'paid', 'A1', '2024-01-17T10:00:00Z')
        return event_store

    def test_distinct_per_day(self, seeded):
        assert seeded.daily_distinct_inquiries(FilterSpec()) == {
            '2024-01-15': 1, '2024-01-16': 1, '2024-01-17': 1,
        }

    def test_conversions_only(self, seeded):
        assert seeded.daily_distinct_inquiries(FilterSpec(), conversions_only=True) == {'2024-01-17': 1}

    def test_window(self, seeded):
        assert seeded.daily_distinct_inquiries(FilterSpec(start='2024-01-16')) == {
            '2024-01-16': 1, '2024-01-17': 1,
        }


class TestIsConversion:

    @pytest.mark.parametrize('event_type', ['paid', 'PAYMENT', 'transaction_success', 'Converted'])
    def test_conversion_set(self, event_type):
        assert is_conversion(event_type)

    @pytest.mark.parametrize('event_type', ['inquiry', 'page_view', '', None])
    def test_not_conversion(self, event_type):
        assert not is_conversion(event_type)


class TestSqliteTier:

    def test_creates_file_and_indexes(self, sqlite_store, tmp_path):
        assert isinstance(sqlite_store, SQLEventBackend)
        assert sqlite_store.persistence == SQLITE
        assert os.path.exists(tmp_path / 'events.sqlite')
        index_names = {ix['name'] for ix in inspect(sqlite_store.engine).get_indexes('events')}
        assert {'idx_events_inquiry', 'idx_events_type'} <= index_names

    def test_reopen_keeps_events(self, tmp_path):
        config = EngineConfig(events_backend='sqlite', events_data_dir=str(tmp_path))
        store = build_event_backend(config)
        _add(store, 'inquiry', 'A1')
        store.close()

        reopened = build_event_backend(config)
        try:
            assert len(reopened.query(FilterSpec())) == 1
        finally:
            reopened.close()


class TestBuildEventBackend:

    def test_memory_choice(self, tmp_path):
        store = build_event_backend(EngineConfig(events_backend='memory', events_data_dir=str(tmp_path)))
        assert isinstance(store, MemoryEventBackend)
        assert store.durable is False

    def test_auto_without_database_url_uses_sqlite(self, tmp_path):
        store = build_event_backend(EngineConfig(events_backend='auto', events_data_dir=str(tmp_path / 'data')))
        try:
            assert store.persistence == SQLITE
            assert store.durable is True
        finally:
            store.close()

    def test_invalid_choice_raises(self):
        with pytest.raises(ValueError):
            build_event_backend(EngineConfig(events_backend='mongo'))

    def test_postgres_choice_requires_url(self):
        with pytest.raises(ValueError):
            build_event_backend(EngineConfig(events_backend='postgres', database_url=None))

    def test_unopenable_tiers_degrade_to_memory(self, tmp_path):
        config = EngineConfig(events_backend='auto', database_url='postgresql://db.invalid/events',
                              events_data_dir=str(tmp_path))
        with patch('leadfunnel.services.event_store._open_sql', side_effect=StorageError('down')) as open_sql:
            store = build_event_backend(config)
        assert isinstance(store, MemoryEventBackend)
        assert open_sql.call_count == 2

    def test_unusable_data_dir_degrades_to_memory(self, tmp_path):
        config = EngineConfig(events_backend='sqlite', events_data_dir=str(tmp_path))
        with patch('leadfunnel.services.event_store.os.makedirs', side_effect=PermissionError('read-only')):
            store = build_event_backend(config)
        assert store.persistence == MEMORY
