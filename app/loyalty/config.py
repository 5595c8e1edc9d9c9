import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    token_max_age_hours: int
    max_import_bytes: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///loyalty.db"),
        token_max_age_hours=_getenv_int("TOKEN_MAX_AGE_HOURS", 12),
        max_import_bytes=_getenv_int("MAX_IMPORT_BYTES", 5 * 1024 * 1024),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "TOKEN_MAX_AGE_SECONDS": s.token_max_age_hours * 3600,
        # excel uploads (5MB by default)
        "MAX_CONTENT_LENGTH": s.max_import_bytes,
    }
