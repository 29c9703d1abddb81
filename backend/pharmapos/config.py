# backend/pharmapos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Plan assigned to tenants created without an explicit license
    DEFAULT_LICENSE_PLAN = os.environ.get("DEFAULT_LICENSE_PLAN", "PROFESSIONAL")

    # Seconds a workflow waits for a (store, product) stock lock
    STOCK_LOCK_TIMEOUT = float(os.environ.get("STOCK_LOCK_TIMEOUT", "10"))

    CORS_ALLOWED_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    ]

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BCRYPT_ROUNDS = 4
    STOCK_LOCK_TIMEOUT = 5.0
