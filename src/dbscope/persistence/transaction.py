"""
Explicit transaction handles opened by a session at a requested isolation level.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ..adapters.base import AdapterError
from ..dialects.base import IsolationLevel
from .errors import TransactionError

if TYPE_CHECKING:
    from .session import Session


class Transaction:
    """
    Handle for a database transaction started by :meth:`Session.begin_transaction`.

    While the handle is active, :meth:`Session.save_changes` writes inside it
    without committing; the owner of the handle decides the outcome.
    """

    def __init__(self, session: "Session", isolation_level: Optional[IsolationLevel]) -> None:
        self.session = session
        self.isolation_level = isolation_level
        self._active = True

    def __repr__(self) -> str:
        level = self.isolation_level.value if self.isolation_level else "default"
        state = "active" if self._active else "finished"
        return f"<Transaction {level} {state}>"

    @property
    def active(self) -> bool:
        return self._active

    def commit(self) -> None:
        self._require_active("commit")
        try:
            self.session.adapter.commit()
        finally:
            self._finish()

    def rollback(self) -> None:
        self._require_active("roll back")
        try:
            self.session.adapter.rollback()
        finally:
            self._finish()

    def close(self) -> None:
        """
        Release the handle, rolling back if it was neither committed nor rolled back.
        """
        if not self._active:
            return
        try:
            self.session.adapter.rollback()
        except AdapterError:
            self.session.logger.warning("Rollback on transaction close failed", exc_info=True)
        finally:
            self._finish()

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._active:
            return
        if exc_type:
            self.rollback()
        else:
            self.commit()

    def _require_active(self, action: str) -> None:
        if not self._active:
            raise TransactionError(f"Cannot {action}: transaction already finished.")

    def _finish(self) -> None:
        self._active = False
        self.session._transaction_finished(self)
