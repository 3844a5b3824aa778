"""Runs work inside a database transaction shared through a context variable."""

from __future__ import annotations

from contextvars import ContextVar
from typing import Callable, Optional, TypeVar

from sqlalchemy.engine import Connection, Engine

T = TypeVar("T")

_current: ContextVar[Optional[Connection]] = ContextVar("ordersvc_tx", default=None)


class TxManager:
    """Opens a transaction per run and exposes its connection to the work inside."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def run(self, fn: Callable[[], T]) -> T:
        """Call fn in a new transaction; commit on success, roll back on any exception."""
        with self.engine.begin() as conn:
            token = _current.set(conn)
            try:
                return fn()
            finally:
                _current.reset(token)

    def connection(self) -> Connection:
        """The connection of the running transaction, or a new one owned by the caller."""
        conn = _current.get()
        if conn is not None:
            return conn
        return self.engine.connect()