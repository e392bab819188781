import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from cadastraqui.core import config
from cadastraqui.core.errors import InternalError, SchedulingError
from cadastraqui.core.request_logging import configure_logging, new_request_id, request_id_var
from cadastraqui.database import Base, engine, ensure_appointment_schema
from cadastraqui.models import application, appointment, notification, user, working_hours  # noqa: F401
from cadastraqui.routes import appointment_routes, availability_routes, notification_routes
from cadastraqui.routes.dependencies import shutdown_dispatcher

configure_logging()
config.validate_runtime_config()

app = FastAPI(title='Cadastraqui Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.middleware('http')
async def bind_request_id(request: Request, call_next):
    request_id = request.headers.get('x-request-id') or new_request_id()
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.url.path)
        response = JSONResponse(status_code=500, content=_error_body(InternalError()))
    finally:
        request_id_var.reset(token)
    response.headers['X-Request-ID'] = request_id
    return response


def _error_body(error: SchedulingError) -> dict:
    return {'detail': error.message, 'code': error.code, 'request_id': request_id_var.get()}


@app.exception_handler(SchedulingError)
async def handle_scheduling_error(request: Request, exc: SchedulingError):
    if isinstance(exc, InternalError):
        logger.error('Internal error on %s %s', request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body(InternalError()))


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def stop_notification_dispatcher() -> None:
    shutdown_dispatcher()


@app.get('/')
def root():
    return {'status': 'Cadastraqui Scheduling API Running'}


app.include_router(availability_routes.router)
app.include_router(appointment_routes.router, prefix='/agendamentos')
app.include_router(notification_routes.router, prefix='/notificacoes')
