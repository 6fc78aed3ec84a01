"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of promowheel.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from promowheel.database.models import Base, Campaign, Operator  # noqa: E402

_jsonb_sqlite_registered = False

# Wednesday; the default week (Sunday start) began on 2026-03-01
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)

DEFAULT_SEGMENTS = [
    {"label": "10% Off", "prize_type": "discount", "color": "#6366f1"},
    {"label": "Free Gift", "prize_type": "free_gift", "color": "#8b5cf6"},
    {"label": "Try Again", "prize_type": "no_win", "color": "#94a3b8"},
]


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all PromoWheel tables.

    Uses StaticPool so every session shares the same in-memory database.
    pysqlite's implicit transaction handling is switched off so SAVEPOINTs
    (used by participant capture) behave like they do on PostgreSQL.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
def seed_operator(
    engine: Engine,
    operator_id: str = "op-1",
    *,
    plan_type: str = "free",
    subscription_status: str | None = None,
    plan_expires_at: datetime | None = None,
    campaign_credits: int = 5,
    lead_credits: int = 5,
    email: str | None = "owner@shop.test",
) -> str:
    with Session(engine) as session:
        session.add(Operator(
            id=operator_id,
            business_name="Corner Shop",
            email=email,
            plan_type=plan_type,
            subscription_status=subscription_status,
            plan_expires_at=plan_expires_at,
            campaign_credits=campaign_credits,
            lead_credits=lead_credits,
        ))
        session.commit()
    return operator_id


def seed_campaign(
    engine: Engine,
    operator_id: str = "op-1",
    *,
    status: str = "active",
    is_published: bool = True,
    start_at: datetime | None = NOW - timedelta(days=1),
    end_at: datetime | None = NOW + timedelta(days=30),
    segments: list[dict] | None = None,
    **fields,
) -> str:
    campaign_id = fields.pop("campaign_id", None) or str(uuid.uuid4())
    with Session(engine) as session:
        session.add(Campaign(
            id=campaign_id,
            operator_id=operator_id,
            name="Spring Spin",
            campaign_type="spinwheel",
            status=status,
            is_published=is_published,
            start_at=start_at,
            end_at=end_at,
            prize_segments=DEFAULT_SEGMENTS if segments is None else segments,
            spins_count=fields.pop("spins_count", 0),
            leads_count=0,
            redemption_expiry_days=fields.pop("redemption_expiry_days", 7),
            **fields,
        ))
        session.commit()
    return campaign_id


def load(engine: Engine, model, pk):
    """Fetch a fresh, detached copy of a row."""
    with Session(engine, expire_on_commit=False) as session:
        return session.get(model, pk)


# ---------------------------------------------------------------------------
# Tokens & API client
# ---------------------------------------------------------------------------
def make_operator_token(operator_id: str = "op-1") -> str:
    import jwt

    from promowheel.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": operator_id}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from promowheel.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def admin_token():
    return make_admin_token()


@pytest.fixture
def operator_token():
    return make_operator_token()


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []

    def send(self, notification) -> None:
        self.sent.append(notification)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def client(db_engine, notifier):
    """FastAPI TestClient wired to the in-memory database."""
    from fastapi.testclient import TestClient

    from promowheel.api.main import app
    from promowheel.api.routes import public
    from promowheel.config import PromoWheelConfig

    app.dependency_overrides[public.get_engine] = lambda: db_engine
    app.dependency_overrides[public.get_config] = lambda: PromoWheelConfig()
    app.dependency_overrides[public.get_notifier] = lambda: notifier
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
