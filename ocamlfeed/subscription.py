"""
Firehose consumer loop.

The loop pulls commit events one at a time, classifies them on its own
thread and hands the resulting writes to a :class:`PersistenceDispatcher`,
so a slow store never stalls intake until the dispatcher's queues are full.
The cursor is checkpointed on every sequence number divisible by
``checkpoint_interval``; after a restart at most ``checkpoint_interval - 1``
events are replayed, and replays are harmless because both store writes are
idempotent.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Protocol

from ocamlfeed.classifier import Topic, classify
from ocamlfeed.dispatch import PersistenceDispatcher
from ocamlfeed.events import CommitEvent
from ocamlfeed.metrics import Metrics
from ocamlfeed.store import CursorStore

logger = logging.getLogger(__name__)

CHECKPOINT_INTERVAL = 20
REPORT_INTERVAL = 100


class EventSource(Protocol):
    def stream(self, cursor: Optional[int]) -> Iterable[CommitEvent]:
        ...

    def close(self) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FirehoseSubscription:
    def __init__(
        self,
        source: EventSource,
        cursor_store: CursorStore,
        dispatcher: PersistenceDispatcher,
        topic: Optional[Topic] = None,
        metrics: Optional[Metrics] = None,
        reconnect_delay: float = 3.0,
        checkpoint_interval: int = CHECKPOINT_INTERVAL,
        report_interval: int = REPORT_INTERVAL,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.cursor_store = cursor_store
        self.dispatcher = dispatcher
        self.topic = topic or Topic()
        self.metrics = metrics or Metrics()
        self.reconnect_delay = reconnect_delay
        self.checkpoint_interval = checkpoint_interval
        self.report_interval = report_interval
        self._now = now
        self._stop = threading.Event()
        self._checkpointed: Optional[int] = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        """Consume the firehose until :meth:`stop` is called, reconnecting after failures."""
        while not self._stop.is_set():
            clean = self.run_once()
            if self._stop.is_set():
                break
            if clean:
                logger.info(f"Firehose stream closed, reconnecting in {self.reconnect_delay}s")
            else:
                logger.warning(f"Firehose connection failed, retrying in {self.reconnect_delay}s")
            if self._stop.wait(self.reconnect_delay):
                break
        logger.info("Firehose subscription stopped")

    def run_once(self) -> bool:
        """Consume one connection; return False if it ended with an error."""
        stream = None
        try:
            cursor = self.cursor_store.get()
            self._checkpointed = cursor
            stream = iter(self.source.stream(cursor))
            for event in stream:
                self.handle_event(event)
                if self._stop.is_set():
                    return True
        except Exception:
            logger.exception("repo subscription errored")
            return False
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
        if not self._stop.is_set():
            logger.warning("repo subscription ended")
        return True

    def handle_event(self, event: CommitEvent) -> None:
        self.metrics.record_event()

        classification = classify(event, self.topic, now=self._now())
        if classification.creates:
            self.metrics.record_match(len(classification.creates))
        self.dispatcher.submit(event.repo, classification)

        if event.seq % self.checkpoint_interval == 0:
            self._checkpoint(event.seq)
        if event.seq % self.report_interval == 0:
            logger.info(self.metrics.snapshot().describe())

    def stop(self) -> None:
        self._stop.set()
        self.source.close()

    def _checkpoint(self, seq: int) -> None:
        if self._checkpointed is not None and seq <= self._checkpointed:
            return
        try:
            self.cursor_store.set(seq)
        except Exception:
            # The next checkpoint boundary retries with a newer sequence.
            logger.exception(f"Could not checkpoint cursor at seq {seq}")
            return
        self._checkpointed = seq
