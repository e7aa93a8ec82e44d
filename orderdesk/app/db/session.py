from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from orderdesk.app.core.config import get_settings
from orderdesk.services.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}


def build_engine(database_url: str) -> Engine:
    settings = get_settings()
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.SQLITE_BUSY_TIMEOUT,
            },
        )
    return create_engine(database_url, pool_pre_ping=settings.DB_POOL_PRE_PING)


engine = build_engine(get_settings().DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def is_retryable_db_error(exc: OperationalError) -> bool:
    """
    Contention transactionnelle (verrou, deadlock, sérialisation).
    Une perte de connexion n'est PAS considérée comme rejouable ici.
    """
    orig = exc.orig
    pgcode = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if pgcode in RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(orig).lower()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Portée transactionnelle explicite : commit si tout passe, rollback sinon.

    Les erreurs de contention base de données ressortent en ConcurrencyConflict,
    seule erreur que l'appelant peut rejouer automatiquement.
    """
    try:
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if is_retryable_db_error(exc):
            raise ConcurrencyConflict(str(exc.orig)) from exc
        raise
    except BaseException:
        db.rollback()
        raise


def run_with_retry(fn: Callable[[], T], *, attempts: int | None = None) -> T:
    if attempts is None:
        attempts = get_settings().TX_RETRY_ATTEMPTS
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrencyConflict:
            if attempt == attempts:
                raise
            logger.warning("Concurrency conflict, retrying (attempt %s/%s)", attempt + 1, attempts)
    raise AssertionError("unreachable")
