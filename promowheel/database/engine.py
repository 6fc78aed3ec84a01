"""
promowheel.database.engine — Database Connection & Sessions
===========================================================

Every participant operation is one transaction: :func:`get_session` yields a
:class:`Session` that commits on success and rolls back on *any* exception,
so a rejected attempt leaves nothing behind.  Driver-level connectivity
failures are re-raised as :class:`~promowheel.errors.TransientStoreFailure`
so callers can tell "retry later" apart from a real bug.

Usage::

    from promowheel.database.engine import create_db_engine, get_session, init_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    with get_session(engine) as session:
        ...
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from promowheel.database.models import Base
from promowheel.errors import TransientStoreFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Pool sizing:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`promowheel.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments where
        Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or exc.connection_invalidated


@contextmanager
def get_session(engine: Engine, *, expire_on_commit: bool = False) -> Iterator[Session]:
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(Operator(id="op-1", business_name="Acme"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=expire_on_commit)
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        if _is_transient(exc):
            logger.warning("Store unavailable, transaction rolled back: %s", exc.orig)
            raise TransientStoreFailure(
                "The data store is temporarily unavailable. Please retry."
            ) from exc
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
