import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_scheduling_schema
from backend.models import appointment, appointment_event, availability, doctor  # noqa: F401
from backend.routes import appointment_routes, availability_routes

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='CareSync Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'CareSync Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')


def run_server(host: str = '0.0.0.0', port: int = 8000, reload: bool = False) -> None:
    import uvicorn

    uvicorn.run('backend.main:app', host=host, port=port, reload=reload, log_level=config.LOG_LEVEL.lower())


if __name__ == '__main__':
    run_server(reload=True)
