"""Serialized access to a model invocation.

Native inference sessions are not safe to call concurrently and are slow
enough that a live loop must not pile up requests behind them. An
InferenceChannel runs every call to one model on a single worker thread, in
submission order, and lets the caller either queue behind in-flight work or
drop the request when the model is busy.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, List, Optional

from faceid.logging_config import get_logger

logger = get_logger(__name__)


class QueuePolicy(Enum):
    """What to do with a request while the model is busy."""

    QUEUE = "queue"  # wait FIFO behind in-flight calls
    DROP_IF_BUSY = "drop_if_busy"  # give up; the next frame will retry


class InferenceChannel:
    """One-at-a-time, FIFO executor for a model invocation.

    Model exceptions are not caught: they surface from ``Future.result()``.

    Attributes:
        name: Channel name used in log messages

    Example:
        >>> channel = InferenceChannel(detector.detect, name="detector")
        >>> future = channel.submit(frame, policy=QueuePolicy.DROP_IF_BUSY)
        >>> if future is not None:
        ...     detections = future.result()
        >>> channel.close()
    """

    def __init__(self, fn: Callable[..., Any], name: str = "model"):
        self.name = name
        self._fn = fn
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"faceid-{name}")
        self._lock = threading.Lock()
        self._pending: List[Future] = []
        self._closed = False

    @property
    def busy(self) -> bool:
        """True while a call is running or queued."""
        with self._lock:
            return any(not f.done() for f in self._pending)

    def submit(
        self,
        *args: Any,
        policy: QueuePolicy = QueuePolicy.QUEUE,
        **kwargs: Any,
    ) -> Optional[Future]:
        """Schedule one call.

        Args:
            *args: Positional arguments for the wrapped function
            policy: QUEUE to wait in line, DROP_IF_BUSY to skip when busy
            **kwargs: Keyword arguments for the wrapped function

        Returns:
            Future of the call, or None if it was dropped.

        Raises:
            RuntimeError: If the channel was closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Inference channel '{self.name}' is closed")

            self._pending = [f for f in self._pending if not f.done()]
            if policy is QueuePolicy.DROP_IF_BUSY and self._pending:
                logger.debug(f"[{self.name}] busy; dropping request")
                return None

            future = self._executor.submit(self._fn, *args, **kwargs)
            self._pending.append(future)
            return future

    def call(self, *args: Any, **kwargs: Any) -> Any:
        """Queue a call and block for its result."""
        future = self.submit(*args, policy=QueuePolicy.QUEUE, **kwargs)
        return future.result()

    def cancel_pending(self) -> int:
        """Cancel queued calls that have not started.

        The call currently running (if any) completes normally.

        Returns:
            Number of calls cancelled.
        """
        with self._lock:
            cancelled = sum(1 for f in self._pending if f.cancel())
            self._pending = [f for f in self._pending if not f.done()]

        if cancelled:
            logger.debug(f"[{self.name}] cancelled {cancelled} queued request(s)")
        return cancelled

    def close(self, wait: bool = True) -> None:
        """Cancel queued calls and stop the worker. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self.cancel_pending()
        self._executor.shutdown(wait=wait)
        logger.debug(f"[{self.name}] closed")

    def __enter__(self) -> InferenceChannel:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        """String representation of channel."""
        return f"InferenceChannel(name='{self.name}', closed={self._closed})"
