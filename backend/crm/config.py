# backend/crm/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/crm.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///crm.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer session lifetime
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))

    # Business calendar used for daily quotas ("today" is a KST date by default)
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Seoul")

    # Base number of customers a salesperson may register per business day.
    # Each administrator approval adds another DAILY_CUSTOMER_LIMIT.
    DAILY_CUSTOMER_LIMIT = int(os.environ.get("DAILY_CUSTOMER_LIMIT", "50"))

    # Spreadsheet allocation upload bounds
    BULK_UPLOAD_MAX_ROWS = int(os.environ.get("BULK_UPLOAD_MAX_ROWS", "500"))
    BULK_UPLOAD_MAX_BYTES = int(os.environ.get("BULK_UPLOAD_MAX_BYTES", str(4 * 1024 * 1024)))

    # Rows per sub-transaction for large public-pool batches
    ALLOCATION_BATCH_SIZE = int(os.environ.get("ALLOCATION_BATCH_SIZE", "500"))

    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", str(8 * 1024 * 1024)))

    # Frontend origins allowed to call the API from a browser
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if o.strip()
    )
