# backend/pharmavault/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmavault.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmavault.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Guinean franc has no minor unit in circulation
    CURRENCY_CODE = os.environ.get("CURRENCY_CODE", "GNF")
    CURRENCY_DECIMALS = int(os.environ.get("CURRENCY_DECIMALS", "0"))

    # Connectivity gate: periodic probe of the backing store
    CONNECTIVITY_MONITOR_ENABLED = _env_bool("CONNECTIVITY_MONITOR_ENABLED", True)
    CONNECTIVITY_PROBE_INTERVAL = float(os.environ.get("CONNECTIVITY_PROBE_INTERVAL", "30"))
    CONNECTIVITY_PROBE_TIMEOUT = float(os.environ.get("CONNECTIVITY_PROBE_TIMEOUT", "4"))
    # When unset, the probe runs SELECT 1 against SQLALCHEMY_DATABASE_URI
    CONNECTIVITY_PROBE_URL = os.environ.get("CONNECTIVITY_PROBE_URL") or None


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CONNECTIVITY_MONITOR_ENABLED = False
    CONNECTIVITY_PROBE_URL = None
    LOG_LEVEL = "DEBUG"
