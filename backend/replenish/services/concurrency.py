# Overview: Unit-of-work helpers: row locking, commit/rollback translation and retry.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModification, OrderError, StorageFailure
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id columns
    are what detects the conflict at flush time.
    """
    return query.with_for_update()


def translate_db_error(exc: Exception) -> OrderError:
    if isinstance(exc, StaleDataError):
        return ConcurrentModification(
            "The record was modified by another operation; reload and retry"
        )
    if isinstance(exc, OperationalError):
        return StorageFailure(f"Storage unavailable: {exc.orig}")
    return StorageFailure(f"Could not persist changes: {exc}")


@contextmanager
def unit_of_work():
    """
    One atomic DB transaction around the body.

    Commits when the body returns; on any exception the session is rolled
    back so nothing the body did is persisted. SQLAlchemy failures are
    re-raised as ConcurrentModification / StorageFailure.
    """
    try:
        yield db.session
        db.session.commit()
    except (StaleDataError, SQLAlchemyError) as exc:
        db.session.rollback()
        raise translate_db_error(exc) from exc
    except BaseException:
        db.session.rollback()
        raise


def flush_or_raise() -> None:
    """Flush pending writes so version conflicts surface inside the unit of work."""
    try:
        db.session.flush()
    except (StaleDataError, SQLAlchemyError) as exc:
        raise translate_db_error(exc) from exc


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on transient failures.

    Retries on ConcurrentModification (optimistic locking conflicts) and
    StorageFailure (locks, dropped connections). func must start from a fresh
    read each time; the session is rolled back between attempts.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (ConcurrentModification, StorageFailure) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("Retrying after %s (attempt %d/%d)", exc.code, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
