# backend/fuelcash/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fuelcash.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fuelcash.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Variance tolerance policy: a difference is disputed when it exceeds
    # max(absolute floor, percent * expected).
    VARIANCE_ABSOLUTE_FLOOR = os.environ.get("VARIANCE_ABSOLUTE_FLOOR", "100")
    VARIANCE_PERCENT_OF_EXPECTED = os.environ.get("VARIANCE_PERCENT_OF_EXPECTED", "0.02")

    AUDIT_ENABLED = _env_bool("AUDIT_ENABLED", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
