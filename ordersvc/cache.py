"""Redis-backed read model of orders."""

from __future__ import annotations

import json
from typing import Any, Optional

import redis

from .domain import Order
from .ports import Cache


def _orders_key(user_id: int) -> str:
    return f"orders:{user_id}"


def _order_key(order_id: int) -> str:
    return f"order:{order_id}"


class RedisCache(Cache):
    """Keeps each user's orders in a Redis list of JSON documents."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def from_address(cls, address: str) -> RedisCache:
        """Create a cache for a "host:port" address; empty parts take the defaults."""
        host, sep, port = address.rpartition(":")
        if not sep:
            host, port = address, ""
        client = redis.Redis(host=host or "localhost", port=int(port) if port else 6379)
        return cls(client)

    def create_order(self, order: Order) -> None:
        data = json.dumps(order.to_dict(), separators=(",", ":")).encode()
        self.client.rpush(_orders_key(order.user_id), data)

    def get_order(self, order_id: int) -> Optional[Order]:
        data = self.client.get(_order_key(order_id))
        if data is None:
            return None
        return Order.from_dict(json.loads(data))

    def get_orders_by_user_id(self, user_id: int) -> list[Order]:
        raw = self.client.lrange(_orders_key(user_id), 0, -1)
        return [Order.from_dict(json.loads(item)) for item in raw]

    def delete_order(self, order_id: int) -> None:
        self.client.delete(_order_key(order_id))