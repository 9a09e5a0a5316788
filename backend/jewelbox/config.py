# backend/jewelbox/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/jewelbox.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///jewelbox.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Cost factor for modern (bcrypt) password hashes
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 10)

    # Whole-operation retries when a sequence reservation loses a race
    SEQUENCE_RETRY_ATTEMPTS = _env_int("SEQUENCE_RETRY_ATTEMPTS", 3)
    SEQUENCE_RETRY_BACKOFF = float(os.environ.get("SEQUENCE_RETRY_BACKOFF", "0.05"))

    # Where backfill puts items that have no branch/category at all.
    # Unset means such items are rejected rather than guessed.
    BACKFILL_DEFAULT_BRANCH_CODE = os.environ.get("BACKFILL_DEFAULT_BRANCH_CODE") or None
    BACKFILL_DEFAULT_CATEGORY_CODE = os.environ.get("BACKFILL_DEFAULT_CATEGORY_CODE") or None


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BCRYPT_ROUNDS = 4
    SEQUENCE_RETRY_BACKOFF = 0.0
