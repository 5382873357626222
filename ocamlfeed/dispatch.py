"""Bounded, partitioned persistence for classified events.

Each worker thread owns one bounded queue. Work is routed by repo DID, and a
post URI always embeds its repo DID, so every operation on a given URI is
applied by one worker in the order the firehose delivered it. A full queue
blocks :meth:`PersistenceDispatcher.submit`, which is what caps memory when
the store falls behind.
"""

import logging
import queue
import threading
import zlib
from typing import List

from ocamlfeed.classifier import Classification
from ocamlfeed.store import PostStore

logger = logging.getLogger(__name__)

_STOP = object()


class PersistenceDispatcher:
    def __init__(self, post_store: PostStore, workers: int = 4, queue_size: int = 1000):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.post_store = post_store
        self._queues: List[queue.Queue] = [queue.Queue(maxsize=queue_size) for _ in range(workers)]
        self._threads = [
            threading.Thread(target=self._work, args=(q,), name=f"persist-{i}", daemon=True)
            for i, q in enumerate(self._queues)
        ]
        self._closed = False
        for thread in self._threads:
            thread.start()

    def submit(self, partition_key: str, classification: Classification) -> None:
        if self._closed:
            raise RuntimeError("dispatcher is closed")
        if classification.is_empty:
            return
        index = zlib.crc32(partition_key.encode("utf-8")) % len(self._queues)
        self._queues[index].put(classification)

    def persist(self, classification: Classification) -> None:
        """Apply one event's changes: deletes first, then inserts."""
        try:
            self.post_store.remove_by_uri(classification.deletes)
            self.post_store.insert_ignoring_conflicts(classification.creates)
        except Exception:
            logger.exception("repo subscription could not handle message")

    def drain(self) -> None:
        for q in self._queues:
            q.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for q in self._queues:
            q.put(_STOP)
        for thread in self._threads:
            thread.join()

    def _work(self, q: queue.Queue) -> None:
        while True:
            item = q.get()
            try:
                if item is _STOP:
                    return
                self.persist(item)
            finally:
                q.task_done()
