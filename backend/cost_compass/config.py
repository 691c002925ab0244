# backend/cost_compass/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///cost_compass.sqlite3",  # default local location (instance dir)
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # bcrypt cost factor for new password hashes
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Bearer session limits
    SESSION_ABSOLUTE_HOURS = _env_int("SESSION_ABSOLUTE_HOURS", 24)
    SESSION_IDLE_MINUTES = _env_int("SESSION_IDLE_MINUTES", 120)

    # Permission cache TTLs (seconds), one per key family
    PERMISSION_CACHE_TTLS = {
        "user_permissions": _env_int("PERMISSION_CACHE_USER_TTL", 15 * 60),
        "property_access": _env_int("PERMISSION_CACHE_PROPERTY_TTL", 10 * 60),
        "role_permissions": _env_int("PERMISSION_CACHE_ROLE_TTL", 60 * 60),
        "user_properties": _env_int("PERMISSION_CACHE_USER_PROPERTIES_TTL", 10 * 60),
        "hierarchy": _env_int("PERMISSION_CACHE_HIERARCHY_TTL", 30 * 60),
        "accessible_properties": _env_int("PERMISSION_CACHE_ACCESSIBLE_TTL", 5 * 60),
    }

    # Permission-update stream (server-sent events)
    SSE_HEARTBEAT_INTERVAL = _env_int("SSE_HEARTBEAT_INTERVAL", 30)
    SSE_STALE_CONNECTION_SECONDS = _env_int("SSE_STALE_CONNECTION_SECONDS", 10 * 60)
    SSE_SWEEP_INTERVAL = _env_int("SSE_SWEEP_INTERVAL", 5 * 60)
    SSE_QUEUE_SIZE = _env_int("SSE_QUEUE_SIZE", 100)
    SSE_SWEEPER_ENABLED = os.environ.get("SSE_SWEEPER_ENABLED", "true").lower() == "true"

    CORS_ALLOWED_ORIGINS = {
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    }
