# ordersvc

The core of an order service that is built around a transactional outbox.

* **Writes** go to a relational database through SQLAlchemy. When an order is
  created or deleted, an outbox row is written in the same transaction. The
  row is keyed `order_created` or `order_deleted`.
* An **outbox worker** claims batches of unsent outbox rows and hands them to
  a message producer. It then marks them as sent.
* **Reads** of a user's orders are answered from a Redis list of JSON
  documents.

## Installing

```
pip install .
pip install ".[test]"   # with pytest
```

`PostgresConfig.url()` builds a `postgresql` URL for SQLAlchemy. SQLAlchemy
needs a PostgreSQL driver to use it, and this package does not depend on one,
so install a driver yourself.

## Domain model (`ordersvc.domain`)

```python
from ordersvc.domain import Order, OrderItem

order = Order(user_id=7)
order.add_item(OrderItem(name="pen", price=120))
order.add_item(OrderItem(name="pad", price=80))
assert order.total_price == 200

order.remove_item(OrderItem(name="pen", price=120))
assert order.total_price == 80
```

Order rules:

* `Order.add_item` raises `ValueError` when an item's price is not positive
  or its name is empty.
* `Order.remove_item` removes the first item with the same name and does
  nothing if there is none.
* `Order.calculate_total_price()` sets the total to the sum of the item
  prices.

Events and serialisation:

* `Order.from_events([...])` rebuilds an order by applying events in turn.
  The events are `OrderCreatedEvent`, `ItemAddedEvent` and
  `OrderDeletedEvent`.
* `Order.apply` records each event. An `OrderCreatedEvent` sets the order's
  state. An `ItemAddedEvent` adds the item and silently skips an invalid one.
  An `OrderDeletedEvent` is only recorded.
* `Order`, `OrderItem` and `OrderCreatedEvent` have `to_dict()` and
  `from_dict()`.

The module also defines `OutboxMessage` and the message keys
`ORDER_CREATED_KEY`, `ORDER_UPDATED_KEY` and `ORDER_DELETED_KEY`.

## Errors (`ordersvc.errors`)

All errors derive from `OrderServiceError`.

* `NoItemsInOrderError`, `InvalidUserIDError` and `InvalidOrderIDError` are
  also `ValueError`s.
* `NoOrderFoundError` and `NotFoundError` are also `LookupError`s.

## Ports (`ordersvc.ports`)

These are abstract base classes that the use cases and the worker depend on:

* `Consumer.consume()` returns `(value, key)`.
* `Producer.produce(key, message)`.
* `Cache`
* `OrderStorage`
* `OutboxStorage`

## Storage (`ordersvc.storage`, `ordersvc.txmanager`)

`TxManager(engine).run(fn)` calls `fn` inside a transaction. It commits on
success and rolls back on any exception. While `fn` runs, the storage classes
use that transaction's connection. Outside of `run`, each call opens its own
connection and commits it.

```python
from sqlalchemy import create_engine
from ordersvc.storage import METADATA, SqlOrderStorage, SqlOutboxStorage
from ordersvc.txmanager import TxManager

engine = create_engine("sqlite:///orders.db")
METADATA.create_all(engine)          # tables: orders, order_items, outbox

tx = TxManager(engine)
orders = SqlOrderStorage(tx)
outbox = SqlOutboxStorage(tx)
```

`SqlOrderStorage` behaviour:

* `save_order` sets the new order's `id`.
* `get_order_by_id` and `delete_order` raise `NoOrderFoundError` for an
  unknown id.

`SqlOutboxStorage` behaviour:

* `get_outbox_message` returns the oldest message with status `not sent`. It
  raises `NotFoundError` when there is none.
* `mark_as_sent` sets a message's status to `sent`.

## Cache (`ordersvc.cache`)

Create a cache in one of two ways:

* `RedisCache(client)` wraps a client you already have.
* `RedisCache.from_address("localhost:6379")` creates one. An empty host
  falls back to `localhost`, and an empty port to `6379`.

Behaviour:

* `create_order` appends the order's JSON to the list `orders:<user_id>`.
* `get_orders_by_user_id` reads that list back.
* `get_order` reads a single key `order:<id>` and returns `None` if it is
  missing.
* `delete_order` deletes the single key `order:<id>`.

## Use cases (`ordersvc.usecases`)

* `CreateOrderUseCase(order_storage, outbox_storage, tx_manager, logger).execute(order)`
  works on a copy of the order. Inside one transaction it computes the total,
  saves the order and writes an `order_created` message. That message holds
  the order's id, customer id, items and total amount.
* `DeleteOrderUseCase(...).execute(order_id)` raises `InvalidOrderIDError`
  for ids that are not positive. Otherwise, in one transaction, it loads the
  order, deletes it and writes an `order_deleted` message.
* `GetOrdersUseCase(cache).execute(user_id)` raises `InvalidUserIDError` for
  ids that are not positive. Otherwise it returns the user's orders from the
  cache.

## Outbox worker (`ordersvc.outbox_worker`)

```python
from ordersvc.outbox_worker import OutboxWorker

worker = OutboxWorker(producer, engine, logger, num_workers=2, batch_size=50, interval=10.0)
worker.run()      # blocks; call worker.stop() from another thread to end it
```

How it works:

* Every `interval` seconds each dispatch thread calls `dispatch_event()`.
* `dispatch_event()` claims up to `batch_size` rows with status `not sent`,
  oldest first, and sets them to `processing`.
* It passes each row's key and message to `producer.produce`.
* It then marks the whole batch `sent` and returns the number published.
* A failed dispatch is logged and retried on the next tick.

## Configuration (`ordersvc.config`)

`load_config(env_path, config_path)` works in three steps:

1. It loads the dotenv file at `env_path`. It raises `FileNotFoundError` if
   that file is missing.
2. It reads `config.yaml` or `config.yml` from the directory `config_path`.
3. It overlays values from these environment variables:
   * `MAIN_HOST`, `MAIN_PORT`, `MAIN_USERNAME`, `MAIN_PASSWORD`,
     `MAIN_DBNAME`
   * `SIDE_HOST`, `SIDE_PORT`, `SIDE_USERNAME`, `SIDE_PASSWORD`,
     `SIDE_DBNAME`
   * `SERVER_PORT`
   * `KAFKA_BROKERS`
   * `REDIS_ADDRESS`

The YAML file has these sections:

* `storage.main` and `storage.side`, each holding:
  * `host`, `port`, `username`, `password`, `dbname` and
    `connection_attempts`
  * a `pool` block
  * an `outbox_table` block with `batch_size` and `num_workers`
* `server` with `host` and `port`
* `logging`
* `kafka` with `topics`, `brokers`, `group_id`, `num_workers` and
  `num_partitions`
* `redis` with `address`

```python
from ordersvc.config import load_config

cfg = load_config(".env", "./configs")
engine = cfg.storage.main.connect()
applied = cfg.storage.main.apply_migrations(engine, "./migrations")
```

How `apply_migrations` works:

* It runs the `-- +goose Up` section of each `<number>_*.sql` file, in
  version order.
* It skips versions already recorded in the table `goose_db_version`.
* It returns the versions it applied.

## Logging (`ordersvc.logger`)

`new_logger(...)` starts from the production profile and applies the option
functions in order:

```python
from ordersvc.logger import new_logger, with_mode, with_encoding, with_initial_fields

log = new_logger(
    with_mode("dev"),
    with_encoding("console"),
    with_initial_fields({"service": "order-service"}),
)
log.info("Order created", order_id=1)
```

The encodings are `json` and `console`.

A `Logger` offers:

* the methods `debug`, `info`, `warning` and `error`;
* `fatal`, which logs, flushes and raises `SystemExit(1)`;
* `sync` and `close`;
* use as a context manager.

## What this package does not do

* It has no HTTP interface and no command to start a service.
* It ships no message-broker client. `Producer` and `Consumer` are
  interfaces for you to implement.
* Nothing here reads published messages back to keep the Redis cache up to
  date. Call `RedisCache.create_order` and `delete_order` yourself.