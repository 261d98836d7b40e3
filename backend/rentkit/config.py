# backend/rentkit/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/rentkit.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///rentkit.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Longest reservation (in days, inclusive) the availability engine will walk
    MAX_RESERVATION_DAYS = int(os.environ.get("MAX_RESERVATION_DAYS", "730"))

    # Check+write attempts before a race is reported as ConcurrentWriteConflict
    RESERVATION_WRITE_ATTEMPTS = int(os.environ.get("RESERVATION_WRITE_ATTEMPTS", "3"))
    RESERVATION_RETRY_BACKOFF = float(os.environ.get("RESERVATION_RETRY_BACKOFF", "0.05"))
