"""Transactions bound to a single connection.

A ``Transaction`` is ACTIVE from ``begin()`` until ``commit()`` or
``rollback()``; both terminal states are final. Committing or rolling back
a transaction that is not active raises ``TransactionError``. A driver
failure during commit/rollback also raises ``TransactionError`` and leaves
the transaction ACTIVE, so the owner can still roll back.

Usage::

    with session.begin_transaction():
        session.save(user)
        session.save(post)
    # committed on clean exit, rolled back on exception
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from relmap.core.dialect import Dialect
from relmap.core.errors import TransactionError
from relmap.core.logging import get_logger
from relmap.core.protocols import Connection

logger = get_logger(__name__)


class TransactionState(str, Enum):
    NEW = "NEW"
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"


class Transaction:
    """Explicit transaction on one connection.

    Parameters
    ----------
    connection
        The connection the transaction runs on.
    dialect
        Supplies the statement that opens a transaction, if the driver
        needs one.
    on_complete
        Called once the transaction reaches a terminal state.
    """

    def __init__(
        self,
        connection: Connection,
        dialect: Dialect,
        *,
        on_complete: Callable[[Transaction], None] | None = None,
    ) -> None:
        self._connection = connection
        self._dialect = dialect
        self._on_complete = on_complete
        self.state = TransactionState.NEW

    @property
    def is_active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    def begin(self) -> Transaction:
        if self.state is not TransactionState.NEW:
            raise TransactionError(f"Transaction cannot begin from state {self.state.value}")
        begin_sql = self._dialect.begin_transaction_sql()
        if begin_sql:
            try:
                self._connection.execute(begin_sql)
            except Exception as e:
                raise TransactionError("Failed to begin transaction", cause=e).with_context(
                    sql=begin_sql
                ) from e
        self.state = TransactionState.ACTIVE
        logger.debug("transaction.begun")
        return self

    def commit(self) -> None:
        self._check_active("commit")
        try:
            self._connection.commit()
        except Exception as e:
            raise TransactionError("Failed to commit transaction", cause=e).with_context(
                operation="commit"
            ) from e
        self._finish(TransactionState.COMMITTED)

    def rollback(self) -> None:
        self._check_active("rollback")
        try:
            self._connection.rollback()
        except Exception as e:
            raise TransactionError("Failed to roll back transaction", cause=e).with_context(
                operation="rollback"
            ) from e
        self._finish(TransactionState.ROLLED_BACK)

    def _check_active(self, operation: str) -> None:
        if not self.is_active:
            raise TransactionError("Transaction is not active").with_context(
                operation=operation, state=self.state.value
            )

    def _finish(self, state: TransactionState) -> None:
        self.state = state
        logger.debug("transaction.finished", state=state.value)
        if self._on_complete is not None:
            self._on_complete(self)

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if not self.is_active:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    def __repr__(self) -> str:
        return f"Transaction(state={self.state.value})"


__all__ = ["Transaction", "TransactionState"]
