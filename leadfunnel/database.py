"""
Declarative base + engine factory for the event store.

Postgres gets a pooled engine, SQLite a file engine usable across threads.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    pass


def normalize_url(url):
    # Heroku/Railway hand out postgres:// but SQLAlchemy 2.x requires postgresql://
    return url.replace('postgres://', 'postgresql://', 1)


def build_engine(url):
    """Create an Engine with per-dialect kwargs."""
    url = normalize_url(url)
    if url.startswith('sqlite'):
        engine = create_engine(url, connect_args={'check_same_thread': False})

        @event.listens_for(engine, 'connect')
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            if ':memory:' in url:
                return
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA journal_mode=WAL')
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)


def build_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)
