"""Unit-of-work transaction scope.

``run_in_transaction`` hands ``work`` a ``Repository`` bound to the session,
commits when ``work`` returns, and rolls back when it raises. The exception
raised by ``work`` propagates as-is.
"""
from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tagstash.common.exceptions import StoreError
from tagstash.repository import CancelSignal, Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCOPE_ACTIVE_KEY = "tagstash.transaction_scope_active"


def run_in_transaction(
    db: Session,
    work: Callable[[Repository], T],
    *,
    cancel: CancelSignal | None = None,
) -> T:
    if db.info.get(_SCOPE_ACTIVE_KEY):
        raise RuntimeError("A transaction scope is already active on this session")

    repo = Repository(db, cancel=cancel)
    repo.check_cancelled()

    db.info[_SCOPE_ACTIVE_KEY] = True
    try:
        try:
            result = work(repo)
            repo.check_cancelled()
        except BaseException as exc:
            db.rollback()
            logger.warning("transaction_rolled_back error=%s message=%s", type(exc).__name__, exc)
            raise

        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("transaction_commit_failed error=%s", type(exc).__name__)
            raise StoreError("Failed to commit transaction") from exc

        logger.debug("transaction_committed")
        return result
    finally:
        db.info.pop(_SCOPE_ACTIVE_KEY, None)
