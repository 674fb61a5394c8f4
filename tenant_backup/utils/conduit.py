# tenant_backup/utils/conduit.py

"""
In-memory byte conduit with backpressure.

A ByteConduit connects one producer thread (writing) to one consumer
(reading). The queue between them holds at most ``max_chunks`` chunks, so a
producer that outruns the consumer blocks in ``write()`` instead of buffering
the whole payload. Either side can tear the conduit down:

- the producer calls ``abort(exc)``; the next ``read()`` raises
  ConduitAbortedError
- the consumer calls ``close_reader()``; the next ``write()`` raises
  ConduitClosedError

run_pipeline() wires a producer callable and a consumer callable together
with a conduit and a single background thread.
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_EOF = object()


class ConduitClosedError(BrokenPipeError):
    """Raised to the producer when the consumer stopped reading."""


class ConduitAbortedError(IOError):
    """Raised to the consumer when the producer aborted the stream."""


class ByteConduit:
    """Bounded single-producer / single-consumer byte pipe."""

    def __init__(self, max_chunks: int = 16, poll_interval: float = 0.1):
        self._queue: queue.Queue = queue.Queue(maxsize=max_chunks)
        self._poll_interval = poll_interval
        self._error: Optional[BaseException] = None
        self._reader_closed = threading.Event()
        self._writer_closed = False
        self._buffer = bytearray()
        self._eof = False
        self.bytes_written = 0
        self.bytes_read = 0
        self.writer = ConduitWriter(self)
        self.reader = ConduitReader(self)

    # Producer side

    def _put(self, item) -> None:
        while True:
            if self._reader_closed.is_set():
                raise ConduitClosedError("Conduit reader is closed")
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return
            except queue.Full:
                continue

    def write(self, data) -> int:
        if self._writer_closed:
            raise ValueError("write to closed conduit")
        chunk = bytes(data)
        if chunk:
            self._put(chunk)
            self.bytes_written += len(chunk)
        return len(chunk)

    def close(self) -> None:
        """Signal end of stream to the reader."""
        if self._writer_closed:
            return
        self._writer_closed = True
        self._put(_EOF)

    def abort(self, exc: BaseException) -> None:
        """Tear the stream down; the reader will raise on its next read."""
        self._error = exc
        self._writer_closed = True

    # Consumer side

    def _next_chunk(self):
        while True:
            if self._error is not None:
                raise ConduitAbortedError(
                    f"Producer aborted stream: {self._error}"
                ) from self._error
            try:
                return self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue

    def read(self, size: int = -1) -> bytes:
        if self._reader_closed.is_set():
            raise ValueError("read from closed conduit")

        while (size is None or size < 0 or len(self._buffer) < size) and not self._eof:
            chunk = self._next_chunk()
            if chunk is _EOF:
                self._eof = True
                break
            self._buffer += chunk

        if size is None or size < 0:
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]

        # Surface an abort that arrived after EOF was queued
        if not data and self._error is not None:
            raise ConduitAbortedError(
                f"Producer aborted stream: {self._error}"
            ) from self._error

        self.bytes_read += len(data)
        return data

    def close_reader(self) -> None:
        self._reader_closed.set()
        # Drain so a producer blocked on put() wakes up and sees the flag
        try:
            while True:
                self._queue.get_nowait()
        except queue.Empty:
            pass


class ConduitWriter:
    """Write-only, non-seekable file object over a ByteConduit."""

    def __init__(self, conduit: ByteConduit):
        self._conduit = conduit

    def write(self, data) -> int:
        return self._conduit.write(data)

    def flush(self) -> None:
        pass

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def close(self) -> None:
        self._conduit.close()


class ConduitReader:
    """Read-only, non-seekable file object over a ByteConduit."""

    def __init__(self, conduit: ByteConduit):
        self._conduit = conduit

    def read(self, size: int = -1) -> bytes:
        return self._conduit.read(size)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def close(self) -> None:
        self._conduit.close_reader()


def _drive_producer(produce: Callable[[ConduitWriter], T], conduit: ByteConduit) -> T:
    try:
        result = produce(conduit.writer)
    except BaseException as e:
        conduit.abort(e)
        raise
    conduit.close()
    return result


def run_pipeline(
    produce: Callable[[ConduitWriter], T],
    consume: Callable[[ConduitReader], None],
    max_chunks: int = 16,
    name: str = "pipeline",
) -> T:
    """
    Run ``produce`` in a background thread and ``consume`` in the calling
    thread, connected by a bounded ByteConduit.

    Returns whatever ``produce`` returned. If the producer fails its exception
    is raised (even when the consumer failed as a consequence); otherwise a
    consumer failure is raised.
    """
    conduit = ByteConduit(max_chunks=max_chunks)

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix=name) as pool:
        future = pool.submit(_drive_producer, produce, conduit)
        try:
            consume(conduit.reader)
        except BaseException as consumer_error:
            conduit.close_reader()
            producer_error = future.exception()
            if producer_error is not None and not isinstance(
                producer_error, ConduitClosedError
            ):
                logger.error(
                    f"{name}: producer failed, consumer stopped: {consumer_error}"
                )
                raise producer_error from consumer_error
            raise

        # A consumer that returns before EOF must not leave the producer blocked
        conduit.close_reader()
        result = future.result()

    logger.debug(f"{name}: pipeline finished", bytes_transferred=conduit.bytes_read)
    return result
