import threading

import pytest
from sqlalchemy import create_engine, select

from ordersvc.logger import new_logger, with_error_output_paths, with_output_paths
from ordersvc.outbox_worker import STATUS_PROCESSING, OutboxWorker
from ordersvc.ports import Producer
from ordersvc.storage import METADATA, OUTBOX, STATUS_SENT, SqlOutboxStorage
from ordersvc.txmanager import TxManager


class RecordingProducer(Producer):
    def __init__(self, fail=False):
        self.messages = []
        self.fail = fail
        self.received = threading.Event()

    def produce(self, key, message):
        if self.fail:
            raise RuntimeError("broker down")
        self.messages.append((key, message))
        self.received.set()


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'outbox.db'}", connect_args={"check_same_thread": False}
    )
    METADATA.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def logger(tmp_path):
    log = new_logger(
        with_output_paths(str(tmp_path / "app.log")),
        with_error_output_paths(str(tmp_path / "err.log")),
    )
    yield log
    log.close()


def _queue(engine, *messages):
    storage = SqlOutboxStorage(TxManager(engine))
    for key, body in messages:
        storage.create_outbox_message(key, body)


def _statuses(engine):
    with engine.connect() as conn:
        return [row.status for row in conn.execute(select(OUTBOX.c.status).order_by(OUTBOX.c.id))]


def test_dispatch_publishes_in_order_and_marks_sent(engine, logger):
    _queue(engine, ("order_created", b'{"a":1}'), ("order_deleted", b'{"b":2}'))
    producer = RecordingProducer()
    worker = OutboxWorker(producer, engine, logger, batch_size=10)

    assert worker.dispatch_event() == 2
    assert producer.messages == [
        (b"order_created", b'{"a":1}'),
        (b"order_deleted", b'{"b":2}'),
    ]
    assert _statuses(engine) == [STATUS_SENT, STATUS_SENT]


def test_dispatch_respects_batch_size(engine, logger):
    _queue(engine, ("k1", b"m1"), ("k2", b"m2"), ("k3", b"m3"))
    producer = RecordingProducer()
    worker = OutboxWorker(producer, engine, logger, batch_size=2)

    assert worker.dispatch_event() == 2
    assert [key for key, _ in producer.messages] == [b"k1", b"k2"]
    assert worker.dispatch_event() == 1
    assert [key for key, _ in producer.messages] == [b"k1", b"k2", b"k3"]
    assert worker.dispatch_event() == 0
    assert len(producer.messages) == 3


def test_dispatch_with_empty_outbox_sends_nothing(engine, logger):
    producer = RecordingProducer()
    worker = OutboxWorker(producer, engine, logger, batch_size=5)
    assert worker.dispatch_event() == 0
    assert producer.messages == []


def test_producer_failure_leaves_messages_processing(engine, logger):
    _queue(engine, ("k1", b"m1"))
    worker = OutboxWorker(RecordingProducer(fail=True), engine, logger, batch_size=5)

    with pytest.raises(RuntimeError, match="broker down"):
        worker.dispatch_event()
    assert _statuses(engine) == [STATUS_PROCESSING]


def test_sent_messages_are_not_dispatched_again(engine, logger):
    _queue(engine, ("k1", b"m1"))
    producer = RecordingProducer()
    worker = OutboxWorker(producer, engine, logger, batch_size=5)
    worker.dispatch_event()
    assert worker.dispatch_event() == 0
    assert producer.messages == [(b"k1", b"m1")]


def test_run_dispatches_until_stopped(engine, logger):
    _queue(engine, ("k1", b"m1"))
    producer = RecordingProducer()
    worker = OutboxWorker(producer, engine, logger, num_workers=1, batch_size=10, interval=0.01)

    thread = threading.Thread(target=worker.run)
    thread.start()
    assert producer.received.wait(5)
    worker.stop()
    thread.join(5)

    assert not thread.is_alive()
    assert producer.messages == [(b"k1", b"m1")]
    assert _statuses(engine) == [STATUS_SENT]


def test_run_after_stop_returns_without_dispatching(engine, logger):
    _queue(engine, ("k1", b"m1"))
    producer = RecordingProducer()
    worker = OutboxWorker(producer, engine, logger, num_workers=2, batch_size=10, interval=0.01)
    worker.stop()
    worker.run()
    assert producer.messages == []
    assert _statuses(engine) == ["not sent"]