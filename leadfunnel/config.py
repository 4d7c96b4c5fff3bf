"""
Centralized configuration — all env vars and engine constants.
"""
import os
from dataclasses import dataclass
from typing import Optional


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis (circuit breaker state) ────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── Event store ──────────────────────────────────────────────────────────────
# DATABASE_URL selects the durable tier. Without it events go to the embedded
# SQLite file under EVENTS_DATA_DIR, and to process memory as a last resort.
DATABASE_URL = os.getenv('DATABASE_URL')
EVENTS_BACKEND = os.getenv('EVENTS_BACKEND', 'auto')
EVENTS_DATA_DIR = os.getenv('EVENTS_DATA_DIR', os.path.join(os.getcwd(), 'data'))
EVENTS_DB_FILENAME = 'events.sqlite'
EVENTS_DEFAULT_LIMIT = 100

# ── Result cache ─────────────────────────────────────────────────────────────
CACHE_TTL_SECONDS = float(os.getenv('CACHE_TTL_SECONDS', '20'))

# ── Google Sheets ledger ─────────────────────────────────────────────────────
GOOGLE_SHEET_ID = os.getenv('GOOGLE_SHEET_ID')
GOOGLE_SERVICE_ACCOUNT_EMAIL = os.getenv('GOOGLE_SERVICE_ACCOUNT_EMAIL')
GOOGLE_PRIVATE_KEY = (os.getenv('GOOGLE_PRIVATE_KEY') or '').replace('\\n', '\n')
LEDGER_SHEET_TITLE = os.getenv('LEDGER_SHEET_TITLE', 'Leads')
LEDGER_TIMEOUT_SECONDS = float(os.getenv('LEDGER_TIMEOUT_SECONDS', '15'))
LEDGER_DEFAULT_LANGUAGE = os.getenv('LEDGER_DEFAULT_LANGUAGE', 'ar')

# ── Auth ─────────────────────────────────────────────────────────────────────
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-change-me')
ADMIN_USERNAME = os.getenv('ADMIN_USERNAME', 'admin')
ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD')
EVENTS_WRITE_TOKEN = os.getenv('EVENTS_WRITE_TOKEN')

# ── Funnel definitions ───────────────────────────────────────────────────────
CONVERSION_EVENT_TYPES = frozenset({
    'payment',
    'payment_success',
    'paid',
    'converted',
    'completed',
    'transaction_success',
})

TIMESERIES_METRICS = (
    'daily_revenue',
    'daily_inquiries',
    'daily_conversions',
    'daily_funnel',
)

# ── Ledger value sets ────────────────────────────────────────────────────────
PAYMENT_METHODS = ('cashplus', 'card', 'cash', 'bank_transfer', 'other')
LANGUAGES = ('ar', 'fr', 'en')


@dataclass(frozen=True)
class EngineConfig:
    """Settings injected into build_analytics_service()."""

    database_url: Optional[str] = None
    events_backend: str = 'auto'
    events_data_dir: str = EVENTS_DATA_DIR
    cache_ttl_seconds: float = 20.0
    sheet_id: Optional[str] = None
    service_account_email: Optional[str] = None
    private_key: Optional[str] = None
    sheet_title: str = 'Leads'
    ledger_timeout_seconds: float = 15.0
    default_language: str = 'ar'

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        return cls(
            database_url=DATABASE_URL,
            events_backend=EVENTS_BACKEND.lower(),
            events_data_dir=EVENTS_DATA_DIR,
            cache_ttl_seconds=CACHE_TTL_SECONDS,
            sheet_id=GOOGLE_SHEET_ID,
            service_account_email=GOOGLE_SERVICE_ACCOUNT_EMAIL,
            private_key=GOOGLE_PRIVATE_KEY or None,
            sheet_title=LEDGER_SHEET_TITLE,
            ledger_timeout_seconds=LEDGER_TIMEOUT_SECONDS,
            default_language=LEDGER_DEFAULT_LANGUAGE,
        )
