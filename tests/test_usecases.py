import json

import pytest

from ordersvc.domain import ORDER_CREATED_KEY, ORDER_DELETED_KEY, Order, OrderItem
from ordersvc.errors import InvalidOrderIDError, InvalidUserIDError, NoOrderFoundError
from ordersvc.logger import new_logger, with_level
from ordersvc.usecases import CreateOrderUseCase, DeleteOrderUseCase, GetOrdersUseCase


class PassTx:
    def __init__(self):
        self.calls = 0

    def run(self, fn):
        self.calls += 1
        return fn()


class FakeOrders:
    def __init__(self, save_error=None, orders=None):
        self.save_error = save_error
        self.saved = []
        self.orders = orders or {}
        self.deleted = []

    def save_order(self, order):
        if self.save_error:
            raise self.save_error
        order.id = 1
        self.saved.append(order)

    def get_order_by_id(self, order_id):
        if order_id not in self.orders:
            raise NoOrderFoundError()
        return self.orders[order_id]

    def get_orders_by_user_id(self, user_id):
        return []

    def delete_order(self, order_id):
        self.deleted.append(order_id)


class FakeOutbox:
    def __init__(self, error=None):
        self.error = error
        self.messages = []

    def create_outbox_message(self, key, message):
        if self.error:
            raise self.error
        self.messages.append((key, message))


class FakeCache:
    def __init__(self, orders=None, error=None):
        self.orders = orders
        self.error = error
        self.calls = []

    def get_orders_by_user_id(self, user_id):
        self.calls.append(user_id)
        if self.error:
            raise self.error
        return self.orders


@pytest.fixture
def log():
    return new_logger(with_level("fatal"))


ORDER = Order(id=1, user_id=123, items=[OrderItem("item1", 100)])


def test_create_success(log):
    orders, outbox, tx = FakeOrders(), FakeOutbox(), PassTx()
    CreateOrderUseCase(orders, outbox, tx, log).execute(ORDER)
    assert tx.calls == 1
    assert orders.saved[0].total_price == 100
    key, body = outbox.messages[0]
    assert key == ORDER_CREATED_KEY
    assert json.loads(body) == {
        "order_id": 1,
        "customer_id": 123,
        "items": [{"name": "item1", "price": 100}],
        "total_amount": 100,
    }


def test_create_fail_save_order(log):
    outbox = FakeOutbox()
    uc = CreateOrderUseCase(FakeOrders(save_error=RuntimeError("db error")), outbox, PassTx(), log)
    with pytest.raises(RuntimeError, match="^db error$"):
        uc.execute(ORDER)
    assert outbox.messages == []


def test_create_fail_outbox(log):
    uc = CreateOrderUseCase(FakeOrders(), FakeOutbox(RuntimeError("outbox error")), PassTx(), log)
    with pytest.raises(RuntimeError, match="^outbox error$"):
        uc.execute(ORDER)


def test_create_does_not_mutate_callers_order(log):
    order = Order(user_id=5, items=[OrderItem("a", 3)])
    CreateOrderUseCase(FakeOrders(), FakeOutbox(), PassTx(), log).execute(order)
    assert order.id == 0 and order.total_price == 0


@pytest.mark.parametrize("bad", [0, -1])
def test_delete_invalid_id(log, bad):
    tx = PassTx()
    with pytest.raises(InvalidOrderIDError):
        DeleteOrderUseCase(FakeOrders(), FakeOutbox(), tx, log).execute(bad)
    assert tx.calls == 0


def test_delete_success(log):
    stored = Order(id=7, user_id=3)
    orders, outbox = FakeOrders(orders={7: stored}), FakeOutbox()
    DeleteOrderUseCase(orders, outbox, PassTx(), log).execute(7)
    assert orders.deleted == [7]
    key, body = outbox.messages[0]
    assert key == ORDER_DELETED_KEY
    assert Order.from_dict(json.loads(body)) == stored


def test_delete_missing_order(log):
    orders = FakeOrders()
    with pytest.raises(NoOrderFoundError):
        DeleteOrderUseCase(orders, FakeOutbox(), PassTx(), log).execute(9)
    assert orders.deleted == []


def test_get_orders_success():
    expected = [Order(id=1, user_id=42), Order(id=2, user_id=42)]
    cache = FakeCache(orders=expected)
    assert GetOrdersUseCase(cache).execute(42) == expected
    assert cache.calls == [42]


def test_get_orders_invalid_user():
    cache = FakeCache(orders=[])
    with pytest.raises(InvalidUserIDError, match="invalid user ID"):
        GetOrdersUseCase(cache).execute(0)
    assert cache.calls == []


def test_get_orders_storage_error():
    with pytest.raises(RuntimeError, match="^db error$"):
        GetOrdersUseCase(FakeCache(error=RuntimeError("db error"))).execute(42)