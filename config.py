"""Environment-driven settings for FormBridge AI.

Read once at import time. Secrets are never logged, only their presence.
"""
import logging
import os
import secrets
from pathlib import Path
from typing import Optional

logger = logging.getLogger("formbridge.config")

BASE_DIR = Path(__file__).resolve().parent


def get_env(name: str) -> Optional[str]:
    """Get and normalize environment variable.

    Normalization:
    - Reads os.getenv(name)
    - Strips whitespace
    - Removes outer single/double quotes if present
    - Returns None if empty after stripping
    """
    value = os.getenv(name)
    if not value:
        return None

    value = value.strip()

    if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
        value = value[1:-1]

    if not value:
        return None

    return value


def get_int_env(name: str, default: int) -> int:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (ValueError, TypeError):
        logger.warning("%s could not be parsed as integer: %s. Using default %d.", name, raw, default)
        return default


def is_production(env: str, debug_raw: str) -> bool:
    """ENV == "production", or DEBUG explicitly off while ENV is set.

    A missing ENV means dev.
    """
    return (env == "production") or (debug_raw in ["0", "false", "False"] and bool(env))


ENV = (get_env("ENV") or "").lower()
DEBUG_RAW = os.getenv("DEBUG", "0")
DEBUG = DEBUG_RAW == "1"
IS_PRODUCTION = is_production(ENV, DEBUG_RAW)

_jwt_secret_raw = get_env("JWT_SECRET")
if not _jwt_secret_raw:
    if not IS_PRODUCTION:
        _jwt_secret_raw = secrets.token_hex(32)
        logger.warning(
            "JWT_SECRET is not set; generating a temporary secret for development. "
            "Do NOT use this in production."
        )
    else:
        raise RuntimeError(
            "JWT_SECRET environment variable is required in production. "
            "Set a strong random string before starting the app."
        )

JWT_SECRET = _jwt_secret_raw
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_DAYS = 7
AUTH_COOKIE_NAME = "auth_token"

OPENAI_API_KEY = get_env("OPENAI_API_KEY")
OPENAI_MODEL = get_env("OPENAI_MODEL") or "gpt-4o"

STRIPE_SECRET_KEY = get_env("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = get_env("STRIPE_WEBHOOK_SECRET")

APP_URL = (get_env("APP_URL") or get_env("PUBLIC_BASE_URL") or "http://localhost:8000").rstrip("/")

ADMIN_SECRET = get_env("ADMIN_SECRET")

DATABASE_URL = get_env("DATABASE_URL")
DATA_DIR = Path(get_env("DATA_DIR") or BASE_DIR / ".data")

INITIAL_CREDITS = 10
FORM_CREDIT_COST = 1
CV_CREDIT_COST = 3
HISTORY_LIMIT = 50

MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png"}
ALLOWED_PDF_TYPES = {"application/pdf"}

FONT_PATH = get_env("FONT_PATH")

TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"
