"""
Runtime configuration read from environment variables.
Every value has a default so the service starts without any environment set up.
"""
import os

from fitquest.constants import (
    DEFAULT_DATABASE_URL,
    DEFAULT_LOG_DIRECTORY_PROD,
    DEFAULT_HISTORY_KEEP_DAYS,
)

DATABASE_URL = os.getenv("FITQUEST_DATABASE_URL", DEFAULT_DATABASE_URL)

LOG_DIR = os.getenv("FITQUEST_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("FITQUEST_LOG_FILE", "fitquest.log")

# API key for the HTTP layer; keep it in the environment in production
API_KEY = os.getenv("FITQUEST_API_KEY", "your-secret-key-change-me")

# Optional JSON file replacing the built-in achievement catalog
ACHIEVEMENTS_FILE = os.getenv("FITQUEST_ACHIEVEMENTS_FILE")

# Nightly xp_history maintenance
HISTORY_KEEP_DAYS = int(os.getenv("FITQUEST_HISTORY_KEEP_DAYS", str(DEFAULT_HISTORY_KEEP_DAYS)))
MAINTENANCE_HOUR = int(os.getenv("FITQUEST_MAINTENANCE_HOUR", "3"))
MAINTENANCE_ENABLED = os.getenv("FITQUEST_MAINTENANCE_ENABLED", "true").lower() == "true"

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "FITQUEST_CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]
