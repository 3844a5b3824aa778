"""Application use cases: create, delete and list orders."""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Callable, Protocol, TypeVar

from .domain import ORDER_CREATED_KEY, ORDER_DELETED_KEY, Order, OrderCreatedEvent
from .errors import InvalidOrderIDError, InvalidUserIDError
from .logger import Logger
from .ports import Cache, OrderStorage, OutboxStorage

T = TypeVar("T")


class _Transactional(Protocol):
    def run(self, fn: Callable[[], T]) -> T: ...


def _to_json(data: Any) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode()


class CreateOrderUseCase:
    """Stores a new order and queues an order-created message in the same transaction."""

    def __init__(
        self,
        order_storage: OrderStorage,
        outbox_storage: OutboxStorage,
        tx_manager: _Transactional,
        logger: Logger,
    ) -> None:
        self.order_storage = order_storage
        self.outbox_storage = outbox_storage
        self.tx_manager = tx_manager
        self.logger = logger

    def execute(self, order: Order) -> None:
        order = replace(order, items=list(order.items), events=[])
        self.logger.info("Executing CreateOrderUseCase", user_id=order.user_id, items_count=len(order.items))

        def work() -> None:
            order.calculate_total_price()
            try:
                self.order_storage.save_order(order)
            except Exception as exc:
                self.logger.error("Failed to save order", error=str(exc))
                raise
            self.logger.info("Order saved", order_id=order.id, user_id=order.user_id)
            event = OrderCreatedEvent(
                order_id=order.id,
                customer_id=order.user_id,
                items=order.items,
                total_amount=order.total_price,
            )
            try:
                self.outbox_storage.create_outbox_message(ORDER_CREATED_KEY, _to_json(event.to_dict()))
            except Exception as exc:
                self.logger.error("Failed to create outbox message", error=str(exc))
                raise
            self.logger.info("Outbox message created", order_id=order.id)

        try:
            self.tx_manager.run(work)
        except Exception as exc:
            self.logger.error("Transaction failed", error=str(exc))
            raise
        self.logger.info("Order created successfully", order_id=order.id, user_id=order.user_id)


class DeleteOrderUseCase:
    """Deletes an order and queues an order-deleted message in the same transaction."""

    def __init__(
        self,
        order_storage: OrderStorage,
        outbox_storage: OutboxStorage,
        tx_manager: _Transactional,
        logger: Logger,
    ) -> None:
        self.order_storage = order_storage
        self.outbox_storage = outbox_storage
        self.tx_manager = tx_manager
        self.logger = logger

    def execute(self, order_id: int) -> None:
        if order_id <= 0:
            self.logger.error("Invalid order ID", order_id=order_id)
            raise InvalidOrderIDError()

        def work() -> None:
            order = self.order_storage.get_order_by_id(order_id)
            self.order_storage.delete_order(order_id)
            self.outbox_storage.create_outbox_message(ORDER_DELETED_KEY, _to_json(order.to_dict()))

        try:
            self.tx_manager.run(work)
        except Exception as exc:
            self.logger.error("Transaction failed", error=str(exc), order_id=order_id)
            raise


class GetOrdersUseCase:
    """Reads a user's orders from the cache."""

    def __init__(self, cache: Cache) -> None:
        self.cache = cache

    def execute(self, user_id: int) -> list[Order]:
        if user_id <= 0:
            raise InvalidUserIDError()
        return self.cache.get_orders_by_user_id(user_id)