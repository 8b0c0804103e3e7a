import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from carelink.core.config import CORS_ORIGINS, LOG_LEVEL, validate_runtime_config
from carelink.database import Base, engine, ensure_scheduling_schema
from carelink.models import appointment, connection, office, rate_limit, unavailability, user  # noqa: F401
from carelink.routes import appointment_routes, connection_routes, office_routes

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = FastAPI(title='CareLink Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'CareLink Scheduling API Running'}


app.include_router(appointment_routes.router)
app.include_router(connection_routes.router)
app.include_router(office_routes.router)
