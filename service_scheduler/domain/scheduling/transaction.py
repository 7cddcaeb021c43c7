"""Unit of work for multi-write scheduling operations"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from .errors import ConflictError
from .repository import SchedulingRepository

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
CONTENTION_SQLSTATES = {"40001", "40P01", "55P03", "57014"}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_contention_error(exc: DBAPIError) -> bool:
    """True for storage errors caused by a competing transaction or a lock timeout"""
    if _sqlstate(exc) in CONTENTION_SQLSTATES:
        return True
    return "database is locked" in str(getattr(exc, "orig", exc)).lower()


@contextmanager
def atomic(db: Session, timeout: Optional[float] = None) -> Iterator[Session]:
    """
    Commit everything done inside the block, or nothing.

    Any exception (including task cancellation) rolls the session back.
    Constraint violations and serialization/lock failures surface as
    ConflictError; the caller decides whether to retry.
    """
    try:
        try:
            if timeout is not None:
                SchedulingRepository.apply_lock_timeout(db, timeout)
            yield db
            db.commit()
        except BaseException:
            db.rollback()
            raise
    except IntegrityError as e:
        logger.warning(f"⚠️ Constraint violation rolled back: {e.orig}")
        raise ConflictError(
            "The change conflicts with existing scheduling data; choose another slot or retry"
        ) from e
    except DBAPIError as e:
        if is_contention_error(e):
            logger.warning(f"⚠️ Concurrent scheduling change detected: {e.orig}")
            raise ConflictError(
                "The provider's calendar changed while booking; choose another slot or retry"
            ) from e
        raise
