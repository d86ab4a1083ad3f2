"""Bounded in-process byte pipe.

Archives are streamed straight between the archive codec and the storage
backend: one side writes into a :class:`PipeWriter` on a background thread
while the other reads from the matching :class:`PipeReader`. The pipe holds
at most ``capacity`` bytes, so memory use does not grow with archive size.
"""

import errno
import io
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from artifact_cache.logging_config import get_logger

DEFAULT_PIPE_CAPACITY = 64 * 1024

DRAIN_CHUNK_SIZE = 64 * 1024


class PipeClosedError(BrokenPipeError):
    """Write to a pipe whose reading end has been closed."""

    def __init__(self) -> None:
        super().__init__(errno.EPIPE, "write on closed pipe")


class _PipeState:
    """Buffer and flags shared by both ends of a pipe."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("Pipe capacity must be positive")
        self.capacity = capacity
        self.buffer = bytearray()
        self.cond = threading.Condition()
        self.write_closed = False
        self.write_error: Optional[BaseException] = None
        self.read_closed = False


class PipeReader(io.RawIOBase):
    """Reading end of a pipe. Blocks until data arrives or the writer closes."""

    def __init__(self, state: _PipeState):
        super().__init__()
        self._state = state

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        state = self._state
        with state.cond:
            while not state.buffer and not state.write_closed and not state.read_closed:
                state.cond.wait()

            if state.read_closed:
                raise ValueError("read from closed pipe")

            if not state.buffer:
                if state.write_error is not None:
                    raise state.write_error
                return 0

            n = min(len(b), len(state.buffer))
            b[:n] = state.buffer[:n]
            del state.buffer[:n]
            state.cond.notify_all()
            return n

    def close(self) -> None:
        """Close the reading end; pending and later writes fail."""
        state = self._state
        with state.cond:
            state.read_closed = True
            state.buffer.clear()
            state.cond.notify_all()
        super().close()


class PipeWriter(io.RawIOBase):
    """Writing end of a pipe. Blocks while the pipe is full."""

    def __init__(self, state: _PipeState):
        super().__init__()
        self._state = state

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        state = self._state
        view = memoryview(b).cast("B")
        written = 0
        with state.cond:
            while written < len(view):
                while len(state.buffer) >= state.capacity and not state.read_closed:
                    state.cond.wait()

                if state.read_closed:
                    raise PipeClosedError()
                if state.write_closed:
                    raise ValueError("write to closed pipe")

                n = min(len(view) - written, state.capacity - len(state.buffer))
                state.buffer += view[written : written + n]
                written += n
                state.cond.notify_all()
        return written

    def close(self) -> None:
        """Signal end of stream to the reader."""
        self.close_with_error(None)

    def close_with_error(self, error: Optional[BaseException]) -> None:
        """Signal end of stream; the reader raises ``error`` once drained."""
        state = self._state
        with state.cond:
            if not state.write_closed:
                state.write_closed = True
                state.write_error = error
            state.cond.notify_all()
        super().close()


def pipe(capacity: int = DEFAULT_PIPE_CAPACITY) -> Tuple[PipeReader, PipeWriter]:
    """Create a connected reader/writer pair.

    Args:
        capacity: Maximum number of bytes buffered between the two ends

    Returns:
        Tuple of (reader, writer)
    """
    state = _PipeState(capacity)
    return PipeReader(state), PipeWriter(state)


def run_pipeline(
    produce: Callable[[PipeWriter], None],
    consume: Callable[[PipeReader], None],
    capacity: int = DEFAULT_PIPE_CAPACITY,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Run a producer and a consumer concurrently across a pipe.

    ``produce`` runs on a background thread and writes the stream; its
    failure is forwarded to the reader. ``consume`` runs on the calling
    thread; once it returns, any bytes it left unread are drained so the
    producer can finish. Both outcomes are collected before anything is
    reported.

    Args:
        produce: Callable writing the stream into the writer
        consume: Callable reading the stream from the reader
        capacity: Pipe capacity in bytes
        logger: Logger for secondary errors

    Raises:
        Exception: The producer's error, unless it only failed because the
            consumer stopped reading, in which case the consumer's error
    """
    logger = logger or get_logger(__name__)
    reader, writer = pipe(capacity)
    outcome: Dict[str, Exception] = {}

    def _run_producer() -> None:
        try:
            produce(writer)
        except Exception as e:
            outcome["producer"] = e
            writer.close_with_error(e)
        finally:
            writer.close()

    thread = threading.Thread(target=_run_producer, name="artifact-cache-producer", daemon=True)
    thread.start()

    consumer_error: Optional[Exception] = None
    try:
        consume(reader)
        _drain(reader)
    except Exception as e:
        consumer_error = e
    finally:
        reader.close()
        thread.join()

    producer_error = outcome.get("producer")

    if producer_error is not None and not isinstance(producer_error, PipeClosedError):
        if consumer_error is not None and consumer_error is not producer_error:
            logger.debug("Consumer also failed: %s", consumer_error)
        raise producer_error

    if consumer_error is not None:
        if producer_error is not None:
            logger.debug("Producer stopped: %s", producer_error)
        raise consumer_error

    if producer_error is not None:
        raise producer_error


def _drain(reader: PipeReader) -> None:
    while reader.read(DRAIN_CHUNK_SIZE):
        pass
