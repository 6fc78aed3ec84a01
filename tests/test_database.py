"""
tests/test_database.py — Session Helper & Schema Bootstrap
============================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import load, seed_operator
from promowheel.database.engine import create_db_engine, get_session, init_db
from promowheel.database.models import Operator
from promowheel.errors import TransientStoreFailure


class TestInitDb:
    def test_creates_all_tables(self):
        engine = create_engine("sqlite://")
        init_db(engine)
        assert set(inspect(engine).get_table_names()) >= {
            "operators",
            "campaigns",
            "attempt_counters",
            "play_events",
            "participants",
            "admin_log",
        }

    def test_create_engine_requires_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()


class TestGetSession:
    def test_commits_on_success(self, db_engine):
        with get_session(db_engine) as session:
            session.add(Operator(id="op-9", business_name="Nine"))
        assert load(db_engine, Operator, "op-9") is not None

    def test_rolls_back_on_error(self, db_engine):
        with pytest.raises(ValueError):
            with get_session(db_engine) as session:
                session.add(Operator(id="op-9", business_name="Nine"))
                session.flush()
                raise ValueError("rejected")
        assert load(db_engine, Operator, "op-9") is None

    def test_operational_error_becomes_transient(self, db_engine):
        with pytest.raises(TransientStoreFailure):
            with get_session(db_engine):
                raise OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    def test_integrity_error_is_not_transient(self, db_engine):
        seed_operator(db_engine)
        with pytest.raises(IntegrityError):
            with get_session(db_engine) as session:
                session.add(Operator(id="op-1", business_name="Duplicate"))
