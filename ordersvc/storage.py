"""SQL-backed order and outbox storage that joins the running transaction."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection

from .domain import Order, OutboxMessage
from .errors import NoOrderFoundError, NotFoundError
from .logger import Logger
from .ports import OrderStorage, OutboxStorage
from .txmanager import TxManager

STATUS_NOT_SENT = "not sent"
STATUS_SENT = "sent"

_ID = BigInteger().with_variant(Integer(), "sqlite")

METADATA = MetaData()

ORDERS = Table(
    "orders",
    METADATA,
    Column("id", _ID, primary_key=True, autoincrement=True),
    Column("user_id", BigInteger, nullable=False),
)

ORDER_ITEMS = Table(
    "order_items",
    METADATA,
    Column("id", _ID, primary_key=True, autoincrement=True),
    Column("order_id", _ID, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
    Column("name", String, nullable=False),
    Column("price", BigInteger, nullable=False),
)

OUTBOX = Table(
    "outbox",
    METADATA,
    Column("id", _ID, primary_key=True, autoincrement=True),
    Column("key", String, nullable=False),
    Column("message", LargeBinary, nullable=False),
    Column("status", String, nullable=False, server_default=STATUS_NOT_SENT),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@contextmanager
def _connection(tx_manager: TxManager) -> Iterator[Connection]:
    """Use the running transaction, or a connection of our own committed on success."""
    conn = tx_manager.connection()
    if conn.in_transaction():
        yield conn
        return
    with conn:
        yield conn
        conn.commit()


class SqlOrderStorage(OrderStorage):
    """Stores orders and their items in the orders and order_items tables."""

    def __init__(self, tx_manager: TxManager, logger: Optional[Logger] = None) -> None:
        self.tx_manager = tx_manager
        self.logger = logger

    def _warn(self, msg: str, **fields: Any) -> None:
        if self.logger is not None:
            self.logger.warning(msg, **fields)

    def save_order(self, order: Order) -> None:
        with _connection(self.tx_manager) as conn:
            result = conn.execute(insert(ORDERS).values(user_id=order.user_id))
            order.id = int(result.inserted_primary_key[0])
            if order.items:
                conn.execute(
                    insert(ORDER_ITEMS),
                    [
                        {"order_id": order.id, "name": item.name, "price": item.price}
                        for item in order.items
                    ],
                )

    def get_order_by_id(self, order_id: int) -> Order:
        query = select(ORDERS.c.id, ORDERS.c.user_id).where(ORDERS.c.id == order_id)
        with _connection(self.tx_manager) as conn:
            row = conn.execute(query).first()
        if row is None:
            self._warn("No order found with the given ID", orderID=order_id)
            raise NoOrderFoundError()
        return Order(id=int(row.id), user_id=int(row.user_id))

    def get_orders_by_user_id(self, user_id: int) -> list[Order]:
        query = (
            select(ORDERS.c.id, ORDERS.c.user_id)
            .where(ORDERS.c.user_id == user_id)
            .order_by(ORDERS.c.id)
        )
        with _connection(self.tx_manager) as conn:
            rows = conn.execute(query).all()
        return [Order(id=int(row.id), user_id=int(row.user_id)) for row in rows]

    def delete_order(self, order_id: int) -> None:
        with _connection(self.tx_manager) as conn:
            result = conn.execute(delete(ORDERS).where(ORDERS.c.id == order_id))
        if result.rowcount == 0:
            self._warn("No order found to delete", orderID=order_id)
            raise NoOrderFoundError()


class SqlOutboxStorage(OutboxStorage):
    """Stores pending messages in the outbox table."""

    def __init__(self, tx_manager: TxManager) -> None:
        self.tx_manager = tx_manager

    def create_outbox_message(self, key: str, message: bytes) -> None:
        with _connection(self.tx_manager) as conn:
            conn.execute(insert(OUTBOX).values(key=key, message=bytes(message)))

    def get_outbox_message(self) -> OutboxMessage:
        """The oldest message not yet sent."""
        query = (
            select(OUTBOX.c.id, OUTBOX.c.status, OUTBOX.c.key, OUTBOX.c.message)
            .where(OUTBOX.c.status == STATUS_NOT_SENT)
            .order_by(OUTBOX.c.created_at.asc(), OUTBOX.c.id.asc())
            .limit(1)
        )
        with _connection(self.tx_manager) as conn:
            row = conn.execute(query).first()
        if row is None:
            raise NotFoundError()
        key = row.key if isinstance(row.key, bytes) else str(row.key).encode()
        return OutboxMessage(
            id=int(row.id),
            key=key,
            message=bytes(row.message),
            sent=str(row.status),
        )

    def mark_as_sent(self, message_id: int) -> None:
        with _connection(self.tx_manager) as conn:
            conn.execute(
                update(OUTBOX).where(OUTBOX.c.id == message_id).values(status=STATUS_SENT)
            )