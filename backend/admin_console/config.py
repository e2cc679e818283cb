# backend/admin_console/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///admin_console.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Remote directory service; when unset the SQL-backed directory is used
    DIRECTORY_BASE_URL = os.environ.get("DIRECTORY_BASE_URL")
    DIRECTORY_TIMEOUT_SECONDS = float(os.environ.get("DIRECTORY_TIMEOUT_SECONDS", "10"))
    DIRECTORY_API_TOKEN = os.environ.get("DIRECTORY_API_TOKEN")
