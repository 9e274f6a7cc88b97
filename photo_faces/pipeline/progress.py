"""
Progress streaming for long-running pipeline stages.

Each stage runs on a background thread and pushes fractional progress
(0.0 to 1.0) through a single-slot :class:`ProgressChannel`. The caller
iterates the generator returned by :func:`progress_stream`, which turns the
fractions into :class:`ProgressEvent` percentages and finishes with one idle
event.

There is no cancel token. Closing the generator closes the channel, the
worker's next ``send`` returns False and the worker stops between items.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from .models import PipelineError

logger = logging.getLogger(__name__)


class ProgressStage(Enum):
    """Which pipeline stage an event belongs to."""

    THUMBNAIL_GENERATION = "thumbnail_generation"
    FACE_EXTRACTION = "face_extraction"
    FACE_RECOGNITION = "face_recognition"
    NONE = "none"


@dataclass(frozen=True)
class ProgressEvent:
    """Progress of a stage in percent; the idle event carries no value."""

    stage: ProgressStage
    percentage: Optional[float] = None

    @classmethod
    def idle(cls) -> "ProgressEvent":
        return cls(ProgressStage.NONE)

    @property
    def is_idle(self) -> bool:
        return self.stage is ProgressStage.NONE


_END = object()

# Seconds to wait for the worker after the stream ends; a cancelled worker
# only notices at its next send
_JOIN_TIMEOUT = 1.0


@dataclass
class _Failure:
    error: BaseException


class ProgressChannel:
    """Bounded channel from a pipeline worker to its consumer."""

    def __init__(self, capacity: int = 1, poll_interval: float = 0.05):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()
        self._poll_interval = poll_interval

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop accepting messages; pending and future sends return False."""
        self._closed.set()

    def send(self, fraction: float) -> bool:
        """
        Push a progress fraction, waiting while the slot is full.

        Returns:
            False once the consumer has gone away; the worker should stop.
        """
        return self._put(float(fraction))

    def fail(self, error: BaseException) -> bool:
        return self._put(_Failure(error))

    def finish(self) -> bool:
        return self._put(_END)

    def receive(self) -> Any:
        return self._queue.get()

    def _put(self, message: Any) -> bool:
        while not self._closed.is_set():
            try:
                self._queue.put(message, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False


def progress_stream(
    stage: ProgressStage, work: Callable[[ProgressChannel], None]
) -> Iterator[ProgressEvent]:
    """
    Run ``work`` in the background and stream its progress.

    Args:
        stage: Stage reported on every non-idle event
        work: Callable receiving the channel; it must send 0.0 first and
            1.0 when done, and return as soon as a send returns False

    Returns:
        Generator of events. The worker thread starts on first iteration.

    Raises:
        PipelineError: from the generator, if ``work`` raised
    """
    channel = ProgressChannel()

    def run() -> None:
        try:
            work(channel)
        except Exception as e:
            logger.exception(f"{stage.value} failed")
            channel.fail(e)
        finally:
            channel.finish()

    def events() -> Iterator[ProgressEvent]:
        worker = threading.Thread(target=run, name=f"photo-faces-{stage.value}", daemon=True)
        worker.start()
        try:
            while True:
                message = channel.receive()
                if message is _END:
                    break
                if isinstance(message, _Failure):
                    error = message.error
                    raise PipelineError(str(error) or type(error).__name__) from error
                yield ProgressEvent(stage, message * 100.0)
                if message >= 1.0:
                    break
            yield ProgressEvent.idle()
        finally:
            channel.close()
            worker.join(timeout=_JOIN_TIMEOUT)

    return events()
