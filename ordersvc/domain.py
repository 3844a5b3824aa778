"""Order aggregate, its items, domain events and outbox records."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Union

ORDER_CREATED_KEY = "order_created"
ORDER_UPDATED_KEY = "order_updated"
ORDER_DELETED_KEY = "order_deleted"


@dataclass(frozen=True)
class OrderItem:
    """A single named, priced line of an order."""

    name: str
    price: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "price": self.price}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OrderItem:
        return cls(name=str(data.get("name", "")), price=int(data.get("price", 0)))


@dataclass
class OrderCreatedEvent:
    """Emitted once an order has been stored."""

    order_id: int
    customer_id: int
    items: list[OrderItem] = field(default_factory=list)
    total_amount: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OrderCreatedEvent:
        return cls(
            order_id=int(data.get("order_id", 0)),
            customer_id=int(data.get("customer_id", 0)),
            items=[OrderItem.from_dict(item) for item in data.get("items") or []],
            total_amount=int(data.get("total_amount", 0)),
        )


@dataclass
class OrderDeletedEvent:
    """Emitted once an order has been removed."""

    order_id: int
    deleted_at: datetime


@dataclass
class ItemAddedEvent:
    """Emitted when an item is appended to an existing order."""

    order_id: int
    item: OrderItem
    added_at: datetime


Event = Union[OrderCreatedEvent, OrderDeletedEvent, ItemAddedEvent]


@dataclass
class Order:
    """An order placed by a user, rebuilt from or mutated by events."""

    id: int = 0
    user_id: int = 0
    items: list[OrderItem] = field(default_factory=list)
    total_price: int = 0
    events: list[Event] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_events(cls, events: Iterable[Event]) -> Order:
        order = cls()
        for event in events:
            order.apply(event)
        return order

    def apply(self, event: Event) -> None:
        """Record an event and fold it into the order's state."""
        self.events.append(event)
        if isinstance(event, OrderCreatedEvent):
            self.id = event.order_id
            self.user_id = event.customer_id
            self.items = list(event.items)
            self.total_price = event.total_amount
        elif isinstance(event, ItemAddedEvent):
            # An invalid item in the event stream is skipped, not fatal.
            with contextlib.suppress(ValueError):
                self.add_item(event.item)
        # A deletion event only gets recorded; the state is left as it was.

    def add_item(self, item: OrderItem) -> None:
        if item.price <= 0:
            raise ValueError("item price must be greater than zero")
        if item.name == "":
            raise ValueError("item name cannot be empty")
        self.items.append(item)
        self.total_price += item.price

    def remove_item(self, item: OrderItem) -> None:
        """Remove the first item that has the same name, if there is one."""
        for position, existing in enumerate(self.items):
            if existing.name == item.name:
                del self.items[position]
                self.total_price -= existing.price
                return

    def calculate_total_price(self) -> None:
        self.total_price = sum(item.price for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "total_price": self.total_price,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Order:
        return cls(
            id=int(data.get("id", 0)),
            user_id=int(data.get("user_id", 0)),
            items=[OrderItem.from_dict(item) for item in data.get("items") or []],
            total_price=int(data.get("total_price", 0)),
        )


@dataclass
class OutboxMessage:
    """A message waiting in the outbox table to be published."""

    id: int = 0
    topic: str = ""
    key: bytes = b""
    message: bytes = b""
    sent: str = ""