from datetime import datetime
from zoneinfo import ZoneInfo

from cadastraqui.core import config


def local_now() -> datetime:
    """Current wall-clock time in the app timezone, as the naive value stored in the database."""
    return datetime.now(ZoneInfo(config.APP_TIMEZONE)).replace(tzinfo=None)


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(config.APP_TIMEZONE)).replace(tzinfo=None)
