import logging
import uuid
from contextvars import ContextVar

from cadastraqui.core import config

request_id_var: ContextVar[str] = ContextVar('request_id', default='-')

LOG_FORMAT = '%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s'


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def new_request_id() -> str:
    return uuid.uuid4().hex


def configure_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.setLevel((level or config.LOG_LEVEL).upper())
    for existing in list(root.handlers):
        if getattr(existing, '_cadastraqui_handler', False):
            root.removeHandler(existing)
    handler._cadastraqui_handler = True
    root.addHandler(handler)
