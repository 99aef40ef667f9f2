from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from matchbook.core import config


def _engine_options(url: str) -> dict:
    if url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


engine = create_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_COLUMNS = {
    'bookings': [
        ('proposal_count', 'ALTER TABLE bookings ADD COLUMN proposal_count INTEGER NOT NULL DEFAULT 0'),
    ],
}

SCHEDULING_INDEXES = {
    'availability_windows': [
        'CREATE INDEX IF NOT EXISTS idx_availability_owner_date ON availability_windows(owner_id, date, start_time)',
    ],
    'bookings': [
        'CREATE INDEX IF NOT EXISTS idx_bookings_status_date ON bookings(status, date)',
        'CREATE INDEX IF NOT EXISTS idx_bookings_requester ON bookings(requester_id, status)',
        'CREATE INDEX IF NOT EXISTS idx_bookings_opponent ON bookings(opponent_id, status)',
    ],
    'invites': [
        'CREATE INDEX IF NOT EXISTS idx_invites_status_date ON invites(status, date)',
        'CREATE INDEX IF NOT EXISTS idx_invites_status_expires ON invites(status, expires_at)',
    ],
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_scheduling_schema(bind=None) -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked and bind is None:
        return

    with _schema_lock:
        if _scheduling_schema_checked and bind is None:
            return

        target = bind or engine
        inspector = inspect(target)
        existing_tables = set(inspector.get_table_names())

        with target.begin() as connection:
            for table_name, columns in SCHEDULING_COLUMNS.items():
                if table_name not in existing_tables:
                    continue
                existing_columns = {column['name'] for column in inspector.get_columns(table_name)}
                for column_name, statement in columns:
                    if column_name not in existing_columns:
                        connection.execute(text(statement))

            for table_name, statements in SCHEDULING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        if bind is None:
            _scheduling_schema_checked = True
