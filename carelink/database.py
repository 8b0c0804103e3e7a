import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./carelink.db")

engine = create_engine(DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_INDEXES = {
    'appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, appointment_date)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_patient_date ON appointments(patient_id, appointment_date)',
    ],
    'doctor_unavailability': [
        'CREATE INDEX IF NOT EXISTS idx_unavailability_doctor_range '
        'ON doctor_unavailability(doctor_id, start_datetime, end_datetime)',
    ],
    'patient_doctor_links': [
        'CREATE INDEX IF NOT EXISTS idx_links_doctor_status ON patient_doctor_links(doctor_id, status)',
    ],
    'rate_limit_hits': [
        'CREATE INDEX IF NOT EXISTS idx_rate_limit_key_time '
        'ON rate_limit_hits(identifier, action_type, created_at)',
    ],
}


def ensure_scheduling_schema(bind=None) -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        target = bind or engine
        existing_tables = set(inspect(target).get_table_names())

        with target.begin() as connection:
            for table_name, statements in SCHEDULING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _scheduling_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
