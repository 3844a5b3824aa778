import json
from datetime import datetime, timezone

import pytest

from ordersvc.domain import (
    ItemAddedEvent,
    Order,
    OrderCreatedEvent,
    OrderDeletedEvent,
    OrderItem,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_from_events_applies_created_event():
    items = [OrderItem("book", 100), OrderItem("pen", 5)]
    created = OrderCreatedEvent(order_id=7, customer_id=42, items=items, total_amount=105)
    order = Order.from_events([created])
    assert order.id == 7
    assert order.user_id == 42
    assert order.items == items
    assert order.total_price == 105
    assert order.events == [created]


def test_item_added_event_extends_order():
    created = OrderCreatedEvent(order_id=1, customer_id=2, items=[OrderItem("a", 10)], total_amount=10)
    added = ItemAddedEvent(order_id=1, item=OrderItem("b", 20), added_at=NOW)
    order = Order.from_events([created, added])
    assert [item.name for item in order.items] == ["a", "b"]
    assert order.total_price == 10 + 20
    assert order.events == [created, added]


def test_invalid_item_added_event_is_recorded_but_ignored():
    created = OrderCreatedEvent(order_id=1, customer_id=2, items=[], total_amount=0)
    added = ItemAddedEvent(order_id=1, item=OrderItem("free", 0), added_at=NOW)
    order = Order.from_events([created, added])
    assert order.items == []
    assert order.total_price == 0
    assert len(order.events) == 2


def test_deleted_event_keeps_state():
    created = OrderCreatedEvent(order_id=3, customer_id=4, items=[OrderItem("x", 9)], total_amount=9)
    deleted = OrderDeletedEvent(order_id=3, deleted_at=NOW)
    order = Order.from_events([created, deleted])
    assert order.id == 3
    assert order.total_price == 9
    assert order.events[-1] is deleted


def test_add_item_rejects_non_positive_price():
    order = Order()
    with pytest.raises(ValueError, match="item price must be greater than zero"):
        order.add_item(OrderItem("thing", 0))
    with pytest.raises(ValueError, match="item price must be greater than zero"):
        order.add_item(OrderItem("thing", -5))
    assert order.items == []


def test_add_item_rejects_empty_name():
    order = Order()
    with pytest.raises(ValueError, match="item name cannot be empty"):
        order.add_item(OrderItem("", 10))
    assert order.total_price == 0


def test_add_item_checks_price_before_name():
    with pytest.raises(ValueError, match="price"):
        Order().add_item(OrderItem("", 0))


def test_add_item_updates_total():
    order = Order()
    order.add_item(OrderItem("a", 3))
    order.add_item(OrderItem("b", 4))
    assert order.total_price == sum(item.price for item in order.items)


def test_remove_item_removes_first_match_by_name():
    order = Order(items=[OrderItem("a", 1), OrderItem("b", 2), OrderItem("a", 3)], total_price=6)
    order.remove_item(OrderItem("a", 999))
    assert order.items == [OrderItem("b", 2), OrderItem("a", 3)]
    assert order.total_price == 5


def test_remove_missing_item_changes_nothing():
    order = Order(items=[OrderItem("a", 1)], total_price=1)
    order.remove_item(OrderItem("zzz", 1))
    assert order.items == [OrderItem("a", 1)]
    assert order.total_price == 1


def test_calculate_total_price_overwrites_stale_total():
    order = Order(items=[OrderItem("a", 10), OrderItem("b", 15)], total_price=999)
    order.calculate_total_price()
    assert order.total_price == 25


def test_order_dict_round_trip():
    order = Order(id=5, user_id=6, items=[OrderItem("a", 1)], total_price=1)
    assert Order.from_dict(order.to_dict()) == order


def test_order_json_wire_form():
    order = Order(id=1, user_id=2, items=[OrderItem("a", 3)], total_price=3)
    wire = json.dumps(order.to_dict(), separators=(",", ":"))
    assert wire == '{"id":1,"user_id":2,"items":[{"name":"a","price":3}],"total_price":3}'


def test_order_dict_excludes_events():
    order = Order.from_events([OrderCreatedEvent(1, 2, [], 0)])
    assert set(order.to_dict()) == {"id", "user_id", "items", "total_price"}


def test_order_from_dict_with_null_items_and_unknown_keys():
    order = Order.from_dict({"id": 9, "user_id": 1, "items": None, "extra": True})
    assert order.items == []
    assert order.id == 9
    assert order.total_price == 0


def test_order_item_round_trip():
    item = OrderItem("widget", 250)
    assert OrderItem.from_dict(item.to_dict()) == item


def test_created_event_round_trip_and_keys():
    event = OrderCreatedEvent(order_id=11, customer_id=12, items=[OrderItem("a", 5)], total_amount=5)
    data = event.to_dict()
    assert set(data) == {"order_id", "customer_id", "items", "total_amount"}
    assert OrderCreatedEvent.from_dict(json.loads(json.dumps(data))) == event