"""Global test configuration: test-mode environment and a fresh database per test."""

import os
import sqlite3
import tempfile

import pytest

# Environment must be set before any marketplace module is imported.
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="marketplace_test_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name
os.environ["JWT_SECRET"] = "test-secret-key-for-marketplace"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["FRONTEND_URL"] = "https://shop.example.com"
os.environ.pop("DEV_MODE", None)
os.environ.pop("EMAIL_WEBHOOK_URL", None)

import marketplace.database as _db_mod
from marketplace.database import init_db

_TABLES = (
    "notifications", "platform_settings", "steward_claims", "steward_listings",
    "orders", "users", "stewards", "products", "sellers", "fraternity_members",
    "chapters",
)


@pytest.fixture(autouse=True)
def _setup_db():
    """Drop and recreate every table before each test."""
    _db_mod.DB_PATH = _tmp.name
    conn = sqlite3.connect(_tmp.name)
    conn.executescript("".join(f"DROP TABLE IF EXISTS {t};" for t in _TABLES))
    conn.close()
    init_db()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from marketplace.main import app

    return TestClient(app)
