"""Configuration module for the User Directory service.

This module provides centralized configuration management, including directory
paths, API server settings, storage backends, cache and search settings, and
bootstrap defaults. All configuration values can be overridden via environment
variables.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory name
DATA_DIR_NAME = os.getenv("DATA_DIR_NAME", "data")
DATA_DIR = ROOT_DIR / DATA_DIR_NAME

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# CORS allowed origins (comma-separated list)
# Default includes local development addresses. For production, set via
# CORS_ALLOWED_ORIGINS environment variable.
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

# --- System of Record ---

DATABASE_URL: str = os.getenv(
    "DATABASE_URL", f"sqlite:///{DATA_DIR}/user_directory.db"
)

# --- Lookaside Cache Configuration ---

# Fixed time-to-live for cached user snapshots (24 hours)
USER_CACHE_TTL_SECONDS: int = int(os.getenv("USER_CACHE_TTL_SECONDS", "86400"))
USER_CACHE_MAX_SIZE: int = int(os.getenv("USER_CACHE_MAX_SIZE", "10000"))
USER_CACHE_PREFIX: str = os.getenv("USER_CACHE_PREFIX", "user:")

# --- Search Index Configuration ---

SEARCH_ENABLED: bool = os.getenv("SEARCH_ENABLED", "true").lower() == "true"
SEARCH_INDEX_PATH: str = os.getenv(
    "SEARCH_INDEX_PATH", str(DATA_DIR / "user_search.db")
)

# Minimum similarity (0.0-1.0) for a search term to match a document token.
SEARCH_MIN_SCORE: float = float(os.getenv("SEARCH_MIN_SCORE", "0.6"))

# --- Pagination ---

DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "5"))
MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

# --- Authentication Configuration ---

# Bcrypt rounds for password hashing (higher = more secure but slower)
BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-in-production")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
    os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7))
)

# --- Bootstrap Configuration ---

BOOTSTRAP_ADMIN_USERNAME: str = os.getenv("BOOTSTRAP_ADMIN_USERNAME", "admin")
BOOTSTRAP_ADMIN_PASSWORD: str = os.getenv("BOOTSTRAP_ADMIN_PASSWORD", "admin123")
BOOTSTRAP_ADMIN_EMAIL: str = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
BOOTSTRAP_ADMIN_NAME: str = os.getenv("BOOTSTRAP_ADMIN_NAME", "System Administrator")
BOOTSTRAP_ADMIN_DEPARTMENT: str = os.getenv("BOOTSTRAP_ADMIN_DEPARTMENT", "Leadership")

# Password given to migrated legacy users and seeded sample users
DEFAULT_USER_PASSWORD: str = os.getenv("DEFAULT_USER_PASSWORD", "password123")

# When true, the admin password is reset to BOOTSTRAP_ADMIN_PASSWORD on every
# startup. Set to "false" once an operator has chosen their own password.
RESET_ADMIN_PASSWORD_ON_STARTUP: bool = (
    os.getenv("RESET_ADMIN_PASSWORD_ON_STARTUP", "true").lower() == "true"
)

SEED_SAMPLE_DATA: bool = os.getenv("SEED_SAMPLE_DATA", "true").lower() == "true"

# --- Logging Configuration ---

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE: Optional[str] = os.getenv("LOG_FILE")
