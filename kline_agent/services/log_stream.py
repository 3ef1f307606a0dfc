"""Publish/subscribe channel that forwards log lines to front ends."""

import logging
import threading
from collections import deque
from typing import Deque, List, Optional


class LogSubscription:
    """One subscriber's bounded buffer. When full, the oldest line is dropped."""

    def __init__(self, broadcaster: "LogBroadcaster", capacity: int):
        self._broadcaster = broadcaster
        self._lines: Deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self.dropped = 0

    def _push(self, line: str) -> None:
        with self._lock:
            if len(self._lines) == self._lines.maxlen:
                self.dropped += 1
            self._lines.append(line)

    def drain(self) -> List[str]:
        """Return and clear every buffered line, oldest first."""
        with self._lock:
            lines = list(self._lines)
            self._lines.clear()
            return lines

    def __len__(self) -> int:
        return len(self._lines)

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)


class LogBroadcaster(logging.Handler):
    """
    logging.Handler that keeps the most recent lines and fans records out to subscribers.

    Every buffer is bounded; a slow subscriber loses its oldest lines instead of
    blocking the loggers.
    """

    def __init__(self, capacity: int = 500, level: int = logging.INFO, fmt: Optional[logging.Formatter] = None):
        super().__init__(level=level)
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        self.capacity = capacity
        self._recent: Deque[str] = deque(maxlen=capacity)
        self._subscribers: List[LogSubscription] = []
        self._subscribers_lock = threading.Lock()
        self.setFormatter(fmt or logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self.publish(line)

    def publish(self, line: str) -> None:
        with self._subscribers_lock:
            self._recent.append(line)
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(line)

    def recent(self, limit: Optional[int] = None) -> List[str]:
        """Most recent lines, oldest first."""
        with self._subscribers_lock:
            lines = list(self._recent)
        if limit is not None:
            lines = lines[-limit:] if limit > 0 else []
        return lines

    def subscribe(self, capacity: Optional[int] = None) -> LogSubscription:
        subscription = LogSubscription(self, capacity or self.capacity)
        with self._subscribers_lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: LogSubscription) -> None:
        with self._subscribers_lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._subscribers_lock:
            return len(self._subscribers)
