"""Interfaces the use cases and workers depend on."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .domain import Order, OutboxMessage


class Consumer(ABC):
    @abstractmethod
    def consume(self) -> tuple[bytes, bytes]:
        """Block for the next message and return (value, key)."""


class Producer(ABC):
    @abstractmethod
    def produce(self, key: bytes, message: bytes) -> None:
        """Publish a message under a key."""


class Cache(ABC):
    @abstractmethod
    def create_order(self, order: Order) -> None: ...

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    def get_orders_by_user_id(self, user_id: int) -> list[Order]: ...

    @abstractmethod
    def delete_order(self, order_id: int) -> None: ...


class OrderStorage(ABC):
    @abstractmethod
    def save_order(self, order: Order) -> None:
        """Store the order and set its id."""

    @abstractmethod
    def get_order_by_id(self, order_id: int) -> Order: ...

    @abstractmethod
    def get_orders_by_user_id(self, user_id: int) -> list[Order]: ...

    @abstractmethod
    def delete_order(self, order_id: int) -> None: ...


class OutboxStorage(ABC):
    @abstractmethod
    def create_outbox_message(self, key: str, message: bytes) -> None: ...

    @abstractmethod
    def get_outbox_message(self) -> OutboxMessage: ...

    @abstractmethod
    def mark_as_sent(self, message_id: int) -> None: ...