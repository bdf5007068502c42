"""Transaction-bound data access handle."""
from __future__ import annotations

from typing import Protocol

from sqlalchemy.orm import Session

from tagstash.common.exceptions import OperationCancelledError
from tagstash.tag.repository import TagQueryBuilder


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


class Repository:
    """Per-entity access objects sharing one session and one cancel signal.

    Only handed out by ``run_in_transaction``; it must not outlive the scope.
    """

    def __init__(self, db: Session, *, cancel: CancelSignal | None = None) -> None:
        self.db = db
        self.cancel = cancel

    def check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelledError()

    def tag(self) -> TagQueryBuilder:
        return TagQueryBuilder(self)
