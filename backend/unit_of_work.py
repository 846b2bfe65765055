"""
Runs a transactional command as one all-or-nothing unit of work

Integrity errors raised by the store, whether at insert or at commit, are
translated into the same domain errors the explicit precondition checks raise.
Values the store cannot hold (too long, out of range) become ValidationFailure.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Optional

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extensions import TransactionRollbackError

from database.database import get_db_manager
from .errors import AirlineError, ConcurrencyError, DuplicateKeyError, ValidationFailure

logger = logging.getLogger(__name__)

IntegrityMapper = Callable[[psycopg2.IntegrityError], Optional[AirlineError]]


def constraint_name(exc: psycopg2.Error) -> Optional[str]:
    """Name of the constraint a psycopg2 error was raised for, if any"""
    diag = getattr(exc, 'diag', None)
    return getattr(diag, 'constraint_name', None) if diag is not None else None


@contextmanager
def translate_data_errors(name: str):
    """Turn a psycopg2.DataError raised in the block into ValidationFailure"""
    try:
        yield
    except psycopg2.DataError as exc:
        logger.warning("%s rejected by the store: %s", name, type(exc).__name__)
        raise ValidationFailure(
            ["One or more values are too long or out of range"]
        ) from exc


def run_command(name: str, work, *args, on_integrity_error: Optional[IntegrityMapper] = None,
                isolation_level=None):
    """
    Execute ``work(conn, *args)`` as an all-or-nothing command

    Args:
        name: Command name used in log records
        work: Callable receiving the open connection first
        on_integrity_error: Optional mapper from an IntegrityError to a domain
            error; returning None falls back to the generic mapping
        isolation_level: psycopg2 isolation level; SERIALIZABLE when omitted

    Returns:
        Whatever ``work`` returns, after the transaction committed
    """
    db_manager = get_db_manager()

    with translate_data_errors(name):
        try:
            if isolation_level is None:
                return db_manager.run_serializable(work, *args)
            return db_manager.run_transaction(work, *args, isolation_level=isolation_level)
        except TransactionRollbackError as exc:
            logger.warning("%s aborted after repeated serialization failures", name)
            raise ConcurrencyError(
                "Unable to complete the operation due to concurrent updates. Please try again."
            ) from exc
        except psycopg2.IntegrityError as exc:
            error = on_integrity_error(exc) if on_integrity_error else None
            if error is None:
                if not isinstance(exc, pg_errors.UniqueViolation):
                    raise
                error = DuplicateKeyError("Duplicate entry detected", constraint=constraint_name(exc))
            logger.warning("%s rejected by the store: %s", name, error.kind)
            raise error from exc
        except AirlineError as exc:
            logger.warning("%s rejected: %s", name, exc.kind)
            raise
