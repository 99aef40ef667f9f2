import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: str = "") -> list[str]:
    raw = value if value is not None else default
    return [item.strip() for item in raw.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./matchbook.db")

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")

# Bookable units are carved out of availability windows; every stored time
# must sit on the increment grid, which is also the claim granularity.
BOOKABLE_UNIT_MINUTES = int(os.getenv("BOOKABLE_UNIT_MINUTES", "60"))
SLOT_INCREMENT_MINUTES = int(os.getenv("SLOT_INCREMENT_MINUTES", "15"))

MAX_RESCHEDULE_ATTEMPTS = int(os.getenv("MAX_RESCHEDULE_ATTEMPTS", "3"))
INVITE_EXPIRY_HOURS = int(os.getenv("INVITE_EXPIRY_HOURS", "72"))
MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "600"))
MAX_BATCH_SLOTS = int(os.getenv("MAX_BATCH_SLOTS", "24"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), default="http://localhost:4200")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")

    if BOOKABLE_UNIT_MINUTES <= 0 or SLOT_INCREMENT_MINUTES <= 0:
        raise RuntimeError("BOOKABLE_UNIT_MINUTES and SLOT_INCREMENT_MINUTES must be positive.")

    if BOOKABLE_UNIT_MINUTES % SLOT_INCREMENT_MINUTES != 0:
        raise RuntimeError("SLOT_INCREMENT_MINUTES must divide BOOKABLE_UNIT_MINUTES.")

    try:
        ZoneInfo(DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RuntimeError(f"DEFAULT_TIMEZONE {DEFAULT_TIMEZONE!r} is not a known timezone.") from exc
