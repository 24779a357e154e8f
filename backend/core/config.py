import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))
MAX_SLOT_DURATION_MINUTES = int(os.getenv("MAX_SLOT_DURATION_MINUTES", "480"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])


def validate_runtime_config() -> None:
    if DEFAULT_SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be a positive number of minutes.")
    if DEFAULT_SLOT_DURATION_MINUTES > MAX_SLOT_DURATION_MINUTES:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES cannot exceed MAX_SLOT_DURATION_MINUTES.")
