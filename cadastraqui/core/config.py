import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "America/Sao_Paulo")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DEFAULT_SLOT_MINUTES = int(os.getenv("DEFAULT_SLOT_MINUTES", "30"))
DEFAULT_LEAD_TIME_MINUTES = int(os.getenv("DEFAULT_LEAD_TIME_MINUTES", "60"))
MIN_APPOINTMENT_MINUTES = int(os.getenv("MIN_APPOINTMENT_MINUTES", "15"))
MAX_APPOINTMENT_MINUTES = int(os.getenv("MAX_APPOINTMENT_MINUTES", "180"))
# Every advertised slot must be bookable as one appointment.
MIN_SLOT_MINUTES = MIN_APPOINTMENT_MINUTES
MAX_SLOT_MINUTES = MAX_APPOINTMENT_MINUTES
MAX_SLOT_QUERY_DAYS = int(os.getenv("MAX_SLOT_QUERY_DAYS", "31"))
MAX_PAGE_SIZE = 100

# Lets a worker mark an appointment as done before its start time.
ALLOW_EARLY_COMPLETION = _get_bool(os.getenv("ALLOW_EARLY_COMPLETION"), default=False)
BOOKING_LOCK_TIMEOUT_SECONDS = float(os.getenv("BOOKING_LOCK_TIMEOUT_SECONDS", "5"))

NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "2"))
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "4"))
NOTIFICATION_BACKOFF_SECONDS = float(os.getenv("NOTIFICATION_BACKOFF_SECONDS", "0.5"))
NOTIFICATION_BACKOFF_MAX_SECONDS = float(os.getenv("NOTIFICATION_BACKOFF_MAX_SECONDS", "8"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if MIN_APPOINTMENT_MINUTES > MAX_APPOINTMENT_MINUTES:
        raise RuntimeError("MIN_APPOINTMENT_MINUTES cannot exceed MAX_APPOINTMENT_MINUTES.")
    if not MIN_SLOT_MINUTES <= DEFAULT_SLOT_MINUTES <= MAX_SLOT_MINUTES:
        raise RuntimeError("DEFAULT_SLOT_MINUTES must be a bookable appointment length.")
