# backend/factory_ledger/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///factory_ledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # What a supply deduction does when it would drive a balance below zero:
    # "reject" raises InsufficientStock, "allow" records the negative balance.
    SUPPLY_NEGATIVE_POLICY = os.environ.get("SUPPLY_NEGATIVE_POLICY", "reject")

    # Failed replays of a queued offline transaction before it is abandoned
    SYNC_MAX_RETRIES = int(os.environ.get("SYNC_MAX_RETRIES", "3"))
