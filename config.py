"""
Runtime settings, read once from the environment (and a local .env file if present).
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", str(60 * 24 * 7)))

# Email
EMAIL_HOST = os.getenv("EMAIL_HOST")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "465"))
EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASS = os.getenv("EMAIL_PASS")
EMAIL_FROM = os.getenv("EMAIL_FROM") or EMAIL_USER
EMAIL_USE_SSL = _bool(os.getenv("EMAIL_USE_SSL", "true"))

# Passwords
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Cart
CART_WRITE_RETRIES = int(os.getenv("CART_WRITE_RETRIES", "3"))

# Server
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
PORT = int(os.getenv("PORT", "8000"))

# Logging
_DEFAULT_LOG_LEVELS = {"production": "INFO", "staging": "INFO", "development": "DEBUG", "test": "WARNING"}
LOG_LEVEL = os.getenv("LOG_LEVEL", _DEFAULT_LOG_LEVELS.get(ENVIRONMENT, "INFO")).upper()
LOG_FILE = os.getenv("LOG_FILE")
LOG_JSON = ENVIRONMENT in ("production", "staging")
