# backend/replenish/config.py
from __future__ import annotations
import os


class Config:
    # SQLite DB stored in backend/instance/replenish.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///replenish.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seed values for the singleton ledger account (decimal strings)
    INITIAL_REVENUE = os.environ.get("INITIAL_REVENUE", "1500000.00")
    INITIAL_BUDGET = os.environ.get("INITIAL_BUDGET", "1500000.00")

    # Profit credit on delivery = total_cost * DELIVERY_MARKUP
    DELIVERY_MARKUP = os.environ.get("DELIVERY_MARKUP", "1.5")

    # "local": ledger shares the request/inventory DB transaction
    # "remote": ledger lives behind HTTP and transitions run as a saga
    LEDGER_MODE = os.environ.get("LEDGER_MODE", "local")
    LEDGER_SERVICE_URL = os.environ.get("LEDGER_SERVICE_URL", "http://127.0.0.1:5001")
    LEDGER_TIMEOUT_SECONDS = float(os.environ.get("LEDGER_TIMEOUT_SECONDS", "5.0"))

    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = 0.1

    LOW_STOCK_DEFAULT_THRESHOLD = None

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    INITIAL_REVENUE = "1000.00"
    INITIAL_BUDGET = "1000.00"
    RETRY_BACKOFF_BASE = 0.0
    LOG_LEVEL = "WARNING"
