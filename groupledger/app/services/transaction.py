"""
services/transaction.py — Unit-of-work scope for service mutations.

Every mutating service operation runs inside exactly one `atomic(session)`
block:

    with atomic(session):
        session.add(...)
        ...
    # committed here; notifications may be dispatched now

Rules:
  - Commit on normal exit.
  - Any exception rolls back everything written inside the block.
  - AppError (business rule violation) is re-raised unchanged.
  - SQLAlchemyError (constraint, connection, commit failure) is logged and
    re-raised as PersistenceError so routes never see driver exceptions.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    try:
        yield session
        session.commit()
    except AppError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Transaction rolled back: %s", exc)
        raise PersistenceError() from exc
    except Exception:
        session.rollback()
        raise
