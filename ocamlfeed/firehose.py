"""Adapter from atproto's subscribeRepos client to a stream of CommitEvents."""

import logging
import queue
import threading
from typing import Iterator, List, Optional

from atproto import CAR, FirehoseSubscribeReposClient, models, parse_subscribe_repos_message

from ocamlfeed.events import CommitEvent, CreateOp, DeleteOp, Operation, at_uri

logger = logging.getLogger(__name__)

# Marker put on the queue when the client returns without an error.
_END = object()

_PUT_POLL_SECONDS = 0.1


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


def decode_commit(message) -> Optional[CommitEvent]:
    """Turn a raw firehose frame into a CommitEvent, or None for non-commits."""

    commit = parse_subscribe_repos_message(message)

    # Identity, account and other frame types carry no record operations.
    if not isinstance(commit, models.ComAtprotoSyncSubscribeRepos.Commit):
        return None

    car = CAR.from_bytes(commit.blocks) if commit.blocks else None

    ops: List[Operation] = []
    for op in commit.ops:
        # The op path is "<collection>/<rkey>", e.g. "app.bsky.feed.post/3k2...".
        collection = op.path.split("/", 1)[0]
        uri = at_uri(commit.repo, op.path)

        if op.action == "create" and op.cid:
            # Retrieve the record associated with the CID; missing blocks give an empty record.
            record = car.blocks.get(op.cid) if car is not None else None
            ops.append(CreateOp(collection, uri, str(op.cid), record if isinstance(record, dict) else {}))
        elif op.action == "delete":
            ops.append(DeleteOp(collection, uri))

    return CommitEvent(seq=commit.seq, repo=commit.repo, ops=tuple(ops))


class FirehoseEventSource:
    """Pull-style access to the subscribeRepos firehose.

    The atproto client pushes frames to a callback on its own thread; here
    they are decoded and placed on a bounded queue that :meth:`stream` reads.
    Once :meth:`close` has been called every later :meth:`stream` is empty.
    """

    def __init__(self, endpoint: Optional[str] = None, queue_size: int = 1000, join_timeout: float = 10.0):
        self.base_uri = _xrpc_base(endpoint) if endpoint else None
        self.queue_size = queue_size
        self.join_timeout = join_timeout
        self._lock = threading.Lock()
        self._closed = False
        self._client: Optional[FirehoseSubscribeReposClient] = None
        self._queue: Optional[queue.Queue] = None

    def stream(self, cursor: Optional[int] = None) -> Iterator[CommitEvent]:
        params = models.ComAtprotoSyncSubscribeRepos.Params(cursor=cursor) if cursor is not None else None
        events: queue.Queue = queue.Queue(maxsize=self.queue_size)
        reader_gone = threading.Event()

        def offer(item) -> None:
            # Nobody drains the queue after the reader leaves; drop the item then.
            while not reader_gone.is_set():
                try:
                    events.put(item, timeout=_PUT_POLL_SECONDS)
                    return
                except queue.Full:
                    pass

        def on_message_handler(message) -> None:
            event = decode_commit(message)
            if event is not None:
                offer(event)

        def on_callback_error_handler(error: BaseException) -> None:
            offer(_Failure(error))

        def run_client() -> None:
            try:
                client.start(on_message_handler, on_callback_error_handler)
            except Exception as e:
                offer(_Failure(e))
            else:
                offer(_END)

        with self._lock:
            if self._closed:
                return
            client = FirehoseSubscribeReposClient(params, base_uri=self.base_uri)
            self._client = client
            self._queue = events

        thread = threading.Thread(target=run_client, name="firehose-client", daemon=True)
        thread.start()
        logger.info(f"Subscribing to firehose, cursor={cursor}")

        try:
            while True:
                item = events.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            reader_gone.set()
            client.stop()
            thread.join(self.join_timeout)
            if thread.is_alive():
                logger.warning(f"Firehose client still running {self.join_timeout}s after stop")
            with self._lock:
                if self._client is client:
                    self._client = None
                    self._queue = None

    def close(self) -> None:
        """Stop the running client and wake up a reader blocked in :meth:`stream`."""
        with self._lock:
            self._closed = True
            client, events = self._client, self._queue
        if client is not None:
            client.stop()
        if events is not None:
            # Drop a queued event if needed so the end marker always fits.
            while True:
                try:
                    events.put_nowait(_END)
                    return
                except queue.Full:
                    try:
                        events.get_nowait()
                    except queue.Empty:
                        pass


def _xrpc_base(endpoint: str) -> str:
    endpoint = endpoint.rstrip("/")
    return endpoint if endpoint.endswith("/xrpc") else f"{endpoint}/xrpc"
