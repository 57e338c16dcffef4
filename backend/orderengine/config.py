# backend/orderengine/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderengine.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///orderengine.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Order numbers look like ORD-20261019-0001
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")

    # Backorders: create short lines without moving stock instead of failing the order
    ALLOW_BACKORDER = _env_bool("ALLOW_BACKORDER", False)

    ORDERS_PAGE_SIZE = int(os.environ.get("ORDERS_PAGE_SIZE", "10"))
    ORDERS_MAX_PAGE_SIZE = int(os.environ.get("ORDERS_MAX_PAGE_SIZE", "100"))

    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.1"))

    # Set by the upstream authentication gateway
    USER_ID_HEADER = os.environ.get("USER_ID_HEADER", "X-User-Id")
    BUSINESS_ID_HEADER = os.environ.get("BUSINESS_ID_HEADER", "X-Business-Id")
