from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking.core import config


def build_engine(database_url: str, **kwargs):
    if database_url.startswith('sqlite'):
        kwargs.setdefault('connect_args', {'check_same_thread': False})
    return create_engine(database_url, **kwargs)


engine = build_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False

ACTIVE_STATUS_SQL = "status IN ('HOLD', 'CONFIRMED')"


def ensure_appointment_schema() -> None:
    """Add the overlap indexes to an appointments table created before they existed."""
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('session_kind', 'ALTER TABLE appointments ADD COLUMN session_kind VARCHAR'),
            ('created_at', 'ALTER TABLE appointments ADD COLUMN created_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_provider_status_range '
                    'ON appointments(provider_id, status, start_time, end_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_start '
                    f'ON appointments(provider_id, start_time) WHERE {ACTIVE_STATUS_SQL}'
                )
            )
            if engine.dialect.name == 'postgresql':
                _ensure_postgres_overlap_constraint(connection)

        _appointment_schema_checked = True


def _ensure_postgres_overlap_constraint(connection) -> None:
    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    exists = connection.execute(
        text("SELECT 1 FROM pg_constraint WHERE conname = 'appointments_no_overlap_per_provider'")
    ).first()
    if exists:
        return
    connection.execute(
        text(
            'ALTER TABLE appointments ADD CONSTRAINT appointments_no_overlap_per_provider '
            'EXCLUDE USING gist (provider_id WITH =, tsrange(start_time, end_time) WITH &&) '
            f'WHERE ({ACTIVE_STATUS_SQL})'
        )
    )
