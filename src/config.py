"""Configuration module for the classroom roster backend.

This module provides centralized configuration management, including the
database location, API server settings, token and cookie policy, signup
timings and SMTP settings. All configuration values can be overridden via
environment variables.
"""

import os
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory (SQLite database lives here unless DATABASE_URL is set)
DATA_DIR = Path(os.getenv("DATA_DIR", str(ROOT_DIR / "data")))

# --- Database Configuration ---

DATABASE_URL: str = os.getenv(
    "DATABASE_URL", f"sqlite:///{DATA_DIR}/classroom_roster.db"
)

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# CORS allowed origins (comma-separated list)
_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,"
    "http://127.0.0.1:3000",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]

# "production" switches cookies to Secure + SameSite=None
APP_ENV: str = os.getenv("APP_ENV", "development")
IS_PRODUCTION: bool = APP_ENV.lower() == "production"

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

APP_DISPLAY_NAME: str = os.getenv("APP_DISPLAY_NAME", "MathsApp")

# --- Authentication Configuration ---

ACCESS_TOKEN_SECRET: str = os.getenv(
    "ACCESS_TOKEN_SECRET", "change-me-in-production"
)
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
PENDING_LOGIN_EXPIRE_MINUTES: int = int(
    os.getenv("PENDING_LOGIN_EXPIRE_MINUTES", "10")
)

SESSION_COOKIE_NAME = "jwt"
PENDING_LOGIN_COOKIE_NAME = "pending_login"
PENDING_LOGIN_PURPOSE = "class_selection"

BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "10"))

# --- Signup / Verification Configuration ---

VERIFICATION_CODE_LENGTH: int = int(os.getenv("VERIFICATION_CODE_LENGTH", "4"))
VERIFICATION_CODE_TTL_MINUTES: int = int(
    os.getenv("VERIFICATION_CODE_TTL_MINUTES", "10")
)
# Unverified accounts are purged once this window lapses
SIGNUP_TTL_MINUTES: int = int(os.getenv("SIGNUP_TTL_MINUTES", "60"))

# No 0/O or 1/I so codes can be read aloud in class
VERIFICATION_CODE_ALPHABET = "ABCDEFGHIJKLMNPQRSTUVWXYZ123456789"
JOIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH: int = int(os.getenv("JOIN_CODE_LENGTH", "6"))
JOIN_CODE_DEFAULT_TTL_MINUTES: int = int(
    os.getenv("JOIN_CODE_DEFAULT_TTL_MINUTES", "10")
)
JOIN_CODE_MAX_TTL_MINUTES: int = 60 * 24 * 30

# --- Email Configuration ---

SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER: str = os.getenv("SMTP_USER", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
SMTP_TIMEOUT_SECONDS: float = float(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
MAIL_FROM: str = os.getenv("MAIL_FROM", SMTP_USER or "no-reply@localhost")


def cookie_options(max_age_seconds: int = 0) -> Dict[str, Any]:
    """Build keyword arguments for ``Response.set_cookie``.

    Args:
        max_age_seconds: Cookie lifetime; 0 leaves it as a session cookie.

    Returns:
        Dictionary of cookie options for the current environment.
    """
    options: Dict[str, Any] = {
        "httponly": True,
        "secure": IS_PRODUCTION,
        "samesite": "none" if IS_PRODUCTION else "lax",
        "path": "/",
    }
    if max_age_seconds:
        options["max_age"] = max_age_seconds
    return options
