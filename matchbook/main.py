import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from matchbook.core import config
from matchbook.database import Base, engine, ensure_scheduling_schema
from matchbook.models import availability, booking, invite, slot_claim, user  # noqa: F401
from matchbook.routes import availability_routes, booking_routes, invite_routes

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format=config.LOG_FORMAT,
)

logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Matchbook Scheduling API', debug=config.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Matchbook Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(invite_routes.router, prefix='/invites')
