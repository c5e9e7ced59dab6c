import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

ALLOWED_ORIGINS = _get_list(os.getenv("ALLOWED_ORIGINS"), ["http://localhost:3000"])

# The provider's region does not observe daylight saving, so a constant offset is enough.
PROVIDER_UTC_OFFSET_MINUTES = _get_int(os.getenv("PROVIDER_UTC_OFFSET_MINUTES"), -180)
DEFAULT_HORIZON_DAYS = _get_int(os.getenv("DEFAULT_HORIZON_DAYS"), 21)

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_API_BASE_URL = os.getenv("GOOGLE_API_BASE_URL", "https://www.googleapis.com/calendar/v3")
GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
GOOGLE_API_TIMEOUT_SECONDS = _get_float(os.getenv("GOOGLE_API_TIMEOUT_SECONDS"), 10.0)
GOOGLE_CALENDAR_ENABLED = _get_bool(os.getenv("GOOGLE_CALENDAR_ENABLED"), default=True)

EXTERNAL_BUSY_TIMEOUT_SECONDS = _get_float(os.getenv("EXTERNAL_BUSY_TIMEOUT_SECONDS"), 5.0)


def validate_runtime_config() -> None:
    if GOOGLE_API_TIMEOUT_SECONDS <= 0 or EXTERNAL_BUSY_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("External calendar timeouts must be positive.")
    if not -14 * 60 <= PROVIDER_UTC_OFFSET_MINUTES <= 14 * 60:
        raise RuntimeError("PROVIDER_UTC_OFFSET_MINUTES must be within +/-14 hours.")
    if (
        APP_ENV.lower() == "production"
        and GOOGLE_CALENDAR_ENABLED
        and not (GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)
    ):
        raise RuntimeError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set in production.")
