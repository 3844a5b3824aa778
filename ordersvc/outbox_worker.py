"""Background worker that publishes pending outbox messages to the broker."""

from __future__ import annotations

import threading
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Engine

from .domain import OutboxMessage
from .logger import Logger
from .ports import Consumer, Producer
from .storage import OUTBOX, STATUS_NOT_SENT, STATUS_SENT

STATUS_PROCESSING = "processing"


class OutboxWorker:
    """Claims batches of unsent outbox rows, publishes them and marks them sent."""

    def __init__(
        self,
        producer: Producer,
        engine: Engine,
        logger: Logger,
        *,
        num_workers: int = 1,
        batch_size: int = 1,
        interval: float = 10.0,
        consumer: Optional[Consumer] = None,
    ) -> None:
        self.producer = producer
        self.engine = engine
        self.logger = logger
        self.num_workers = num_workers
        self.batch_size = batch_size
        self.interval = interval
        self.consumer = consumer
        self._stop = threading.Event()

    def run(self) -> None:
        """Run the dispatch workers and block until the worker is stopped."""
        self.logger.info("Worker started")
        threads = [
            threading.Thread(
                target=self._dispatch_worker,
                args=(worker_id,),
                name=f"outbox-dispatch-{worker_id}",
                daemon=True,
            )
            for worker_id in range(self.num_workers)
        ]
        for thread in threads:
            self.logger.info("Starting dispatch worker", worker_id=thread.name)
            thread.start()
        for thread in threads:
            thread.join()
        self.logger.info("Worker stopped")

    def stop(self) -> None:
        self._stop.set()
        self.logger.info("Worker stopped")

    def _dispatch_worker(self, worker_id: int) -> None:
        self.logger.info("Dispatch Worker started", worker_id=worker_id)
        while not self._stop.wait(self.interval):
            self.logger.debug("Worker tick", worker_id=worker_id)
            try:
                self.dispatch_event()
            except Exception as exc:
                self.logger.error("Dispatch event failed", error=str(exc), worker_id=worker_id)
            else:
                self.logger.debug("Dispatch event succeeded", worker_id=worker_id)
        self.logger.info("Dispatch Worker stopping due to ctx done", worker_id=worker_id)

    def _claim_batch(self) -> list[OutboxMessage]:
        query = (
            select(OUTBOX.c.id, OUTBOX.c.key, OUTBOX.c.message)
            .where(OUTBOX.c.status == STATUS_NOT_SENT)
            .order_by(OUTBOX.c.created_at.asc(), OUTBOX.c.id.asc())
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
        )
        with self.engine.begin() as conn:
            rows = conn.execute(query).all()
            if not rows:
                return []
            ids = [int(row.id) for row in rows]
            conn.execute(
                update(OUTBOX).where(OUTBOX.c.id.in_(ids)).values(status=STATUS_PROCESSING)
            )
        return [
            OutboxMessage(
                id=int(row.id),
                key=row.key if isinstance(row.key, bytes) else str(row.key).encode(),
                message=bytes(row.message),
                sent=STATUS_PROCESSING,
            )
            for row in rows
        ]

    def dispatch_event(self) -> int:
        """Publish one batch of pending messages; return how many were sent."""
        self.logger.debug("Attempting to dispatch event")
        messages = self._claim_batch()
        if not messages:
            self.logger.debug("No outbox messages to process")
            return 0

        for message in messages:
            try:
                self.producer.produce(message.key, message.message)
            except Exception as exc:
                self.logger.error(
                    "Failed to produce message to broker", error=str(exc), message_id=message.id
                )
                raise
            self.logger.info("Produced message to broker", message_id=message.id)

        ids = [message.id for message in messages]
        try:
            with self.engine.begin() as conn:
                conn.execute(update(OUTBOX).where(OUTBOX.c.id.in_(ids)).values(status=STATUS_SENT))
        except Exception as exc:
            self.logger.error("Failed to update outbox messages status to sent", error=str(exc))
            raise
        self.logger.info("Marked outbox messages as sent", count=len(messages))
        return len(messages)