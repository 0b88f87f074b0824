"""
Shared fixtures.

Environment is set before anything from yono is imported, since settings
load once at import time.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./yono-test.db")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test_generic")
os.environ.setdefault("INTERNAL_API_TOKEN", "internal-test-token")

import pytest

from yono.database import build_engine, create_tables
from yono.services.data_store import SqlDataStore

WEBHOOK_SECRET = os.environ["PAYMENT_WEBHOOK_SECRET"]
INTERNAL_TOKEN = os.environ["INTERNAL_API_TOKEN"]

CORE_TABLES = ("bookings", "payments", "webhook_events")


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file per test"""
    engine = build_engine(f"sqlite:///{tmp_path / 'yono.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    """Row store with every table present"""
    create_tables(bind=engine)
    return SqlDataStore(engine)


@pytest.fixture
def make_store(engine):
    """Row store with only the named tables created"""
    from yono.database import Base
    from yono import models  # noqa: F401

    def factory(*table_names):
        tables = [Base.metadata.tables[name] for name in table_names]
        create_tables(bind=engine, tables=tables)
        return SqlDataStore(engine)

    return factory


def booking_payload(**overrides):
    payload = {
        "type": "flight",
        "offer_id": "offer-del-bom-001",
        "offer_snapshot": {"carrier": "6E", "segments": 1},
        "amount": 15000,
        "currency": "INR",
        "contact": {"name": "Asha Rao", "email": "asha@example.com", "phone": "+919800000000"},
        "travelers": [{"first_name": "Asha", "last_name": "Rao"}],
    }
    payload.update(overrides)
    return payload
