"""Shared test fixtures."""
import base64

import pytest
from unittest.mock import patch

from leadfunnel.config import EngineConfig
from leadfunnel.models.ledger import LedgerRecord
from leadfunnel.services.analytics import AnalyticsService
from leadfunnel.services.cache import ResultCache
from leadfunnel.services.event_store import MemoryEventBackend, build_event_backend
from leadfunnel.services.ledger import LedgerReader, LedgerSource


class FakeRedis:
    """Minimal in-memory Redis fake for circuit breaker tests."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value):
        self.get_store[key] = value

    def incr(self, key):
        val = int(self.get_store.get(key, 0)) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = value

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that executes immediately."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def set(self, key, value):
        self._ops.append(('set', key, value))
        return self

    def delete(self, *keys):
        self._ops.append(('delete', keys))
        return self

    def hincrby(self, key, field, amount):
        self._ops.append(('hincrby', key, field, amount))
        return self

    def hset(self, key, field, value):
        self._ops.append(('hset', key, field, value))
        return self

    def execute(self):
        for op in self._ops:
            if op[0] == 'set':
                self._redis.set(op[1], op[2])
            elif op[0] == 'delete':
                self._redis.delete(*op[1])
            elif op[0] == 'hincrby':
                self._redis.hincrby(op[1], op[2], op[3])
            elif op[0] == 'hset':
                self._redis.hset(op[1], op[2], op[3])
        self._ops = []


class FakeLedgerSource(LedgerSource):
    """Serves canned sheet rows and counts fetches."""

    def __init__(self, rows=None, error=None):
        self.rows = rows if rows is not None else []
        self.error = error
        self.calls = 0

    def fetch_rows(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.rows


@pytest.fixture
def fake_redis():
    """In-memory Redis fake with dict-backed storage."""
    return FakeRedis()


@pytest.fixture
def ledger_rows():
    """Sheet rows as the Sheets API returns them (header -> cell)."""
    return [
        {
            'Timestamp': '2024-01-15T10:00:00Z',
            'Inquiry ID': 'A1',
            'Transaction ID': 'T-100',
            'Payment Status': 'paid',
            'Payment Method': 'credit_card',
            'Amount': '200',
            'Selected Course': 'PMP Certification',
            'Lang': 'fr',
            'Full Name': 'Sara Alami',
            'Email': 'sara@example.com',
            'Phone Number': '+212600000001',
            'Experience': 'less_than_5',
            'utm_source': 'facebook',
            'utm_medium': 'cpc',
            'utm_campaign': 'winter',
        },
        {
            'Timestamp': '2024-01-16 09 h 05 min 00 s',
            'Inquiry ID': 'A2',
            'Payment Status': 'Paid',
            'Payment Method': 'CashPlus',
            'Amount': '300 MAD',
            'Selected Course': 'Planning Pro',
            'Lang': 'ar',
            'Full Name': 'Youssef Benali',
            'utm_source': 'google',
            'utm_medium': 'cpc',
            'utm_campaign': 'winter',
            'utm_content': 'video',
        },
        {
            'Timestamp': '2024-01-20T12:00:00',
            'Inquiry ID': 'A3',
            'Payment Status': 'pending_cashplus',
            'Payment Method': 'cashplus',
            'Amount': '500',
            'Selected Course': 'qse basics',
            'Lang': 'en',
            'utm_campaign': 'undefined',
        },
        {
            'Timestamp': 'not a date',
            'Inquiry ID': 'A4',
            'Payment Status': 'failed',
            'Payment Method': 'virement',
            'Amount': 'abc',
            'Selected Course': '',
            'Lang': '',
        },
    ]


@pytest.fixture
def ledger_source(ledger_rows):
    return FakeLedgerSource(ledger_rows)


@pytest.fixture
def ledger_reader(ledger_source):
    return LedgerReader(ledger_source)


@pytest.fixture
def memory_store():
    return MemoryEventBackend()


@pytest.fixture
def sqlite_store(tmp_path):
    """Embedded tier on a throwaway data dir."""
    store = build_event_backend(EngineConfig(events_backend='sqlite', events_data_dir=str(tmp_path)))
    yield store
    store.close()


@pytest.fixture(params=['memory', 'sqlite'])
def event_store(request, tmp_path):
    """Runs the test once per local tier."""
    if request.param == 'memory':
        store = MemoryEventBackend()
    else:
        store = build_event_backend(EngineConfig(events_backend='sqlite', events_data_dir=str(tmp_path)))
    yield store
    store.close()


@pytest.fixture
def analytics(memory_store, ledger_reader):
    return AnalyticsService(memory_store, ledger_reader, ResultCache(ttl_seconds=20))


@pytest.fixture
def app(analytics, fake_redis):
    """Flask test app with open access (no admin password)."""
    from leadfunnel import create_app
    with patch('leadfunnel.extensions.redis_client', fake_redis):
        app = create_app(analytics=analytics)
    app.config.update(TESTING=True, ADMIN_PASSWORD=None, EVENTS_WRITE_TOKEN=None)
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def basic_auth():
    """Factory for an HTTP basic Authorization header."""
    def _make(username, password):
        token = base64.b64encode(f'{username}:{password}'.encode('utf-8')).decode('ascii')
        return {'Authorization': f'Basic {token}'}
    return _make


@pytest.fixture
def make_record():
    """Factory fixture — builds a LedgerRecord with sensible defaults."""
    def _make(**overrides):
        defaults = dict(
            timestamp='2024-01-15T10:00:00Z',
            parsed_date=None,
            inquiry_id='A1',
            transaction_id='',
            status='paid',
            payment_method='card',
            amount=100.0,
            final_amount=100.0,
            currency='MAD',
            course='PMP',
            normalized_course='PMP',
            language='fr',
        )
        defaults.update(overrides)
        if 'amount' in overrides and 'final_amount' not in overrides:
            defaults['final_amount'] = overrides['amount']
        return LedgerRecord(**defaults)
    return _make
