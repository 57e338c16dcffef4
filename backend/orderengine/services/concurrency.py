# Overview: Unit-of-work, row locking and retry helpers shared by the services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, StorageError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; unit_of_work() takes the
    database write lock up front there instead.
    """
    return query.with_for_update()


def _begin_immediate(session: Session) -> None:
    conn = session.connection()
    if conn.dialect.name != "sqlite":
        return
    raw = conn.connection.dbapi_connection
    if not raw.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _conflict_from(exc: IntegrityError) -> ConflictError:
    return ConflictError(
        "Conflicting concurrent write; retry the operation",
        details={"reason": str(exc.orig) if exc.orig is not None else "integrity violation"},
    )


@contextmanager
def unit_of_work(session: Session):
    """
    Run a block of writes as one atomic unit: commit on success, roll back
    everything on any exception.

    IntegrityError (e.g. a duplicate order number) is reported as ConflictError.
    Other exceptions propagate unchanged after the rollback.
    """
    _begin_immediate(session)
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise _conflict_from(exc) from exc
    except BaseException:
        session.rollback()
        raise


def run_with_retry(func, *, session: Session, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Exhausted retries and any other
    SQLAlchemy failure surface as StorageError.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except IntegrityError as exc:
            session.rollback()
            raise _conflict_from(exc) from exc
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                raise StorageError(
                    f"Storage operation failed after {attempts} attempts: {exc}",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Storage operation failed: {exc}") from exc
