"""
Event bus for project and build notifications.

The core publishes events here; UIs, the HTTP layer, and the CLI consume
them. Publishing never blocks on consumers:
- publish() stamps the event, appends it to a bounded history, and hands
  it to a dispatcher thread
- Subscribers are called on the dispatcher thread; a failing subscriber
  is logged and does not affect other subscribers
- Polling clients read the history by sequence number
"""

import itertools
import logging
import queue
import threading
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1000


class EventType(str, Enum):
    PROJECT_ADDED = "project_added"
    PROJECT_REMOVED = "project_removed"
    FILE_LIST_CHANGED = "file_list_changed"
    BUILD_STARTED = "build_started"
    BUILD_SUCCEEDED = "build_succeeded"
    BUILD_FAILED = "build_failed"
    BUILD_SKIPPED = "build_skipped"


class Event(BaseModel):
    """A single notification. seq is assigned by the bus on publish."""

    model_config = ConfigDict(extra="forbid")

    type: EventType
    project_id: str
    file_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    seq: int = 0
    timestamp: datetime = Field(default_factory=datetime.now)


EventHandler = Callable[[Event], None]


class EventBus:
    """Thread-safe, non-blocking event publisher."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._handlers: List[EventHandler] = []

        self._queue: "queue.Queue[Optional[Event]]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None
        self._closed = False

    def publish(
        self,
        event_type: EventType,
        project_id: str,
        file_id: Optional[str] = None,
        **payload: Any,
    ) -> Event:
        """Record and dispatch an event. Returns the stamped event."""
        with self._lock:
            event = Event(
                type=event_type,
                project_id=project_id,
                file_id=file_id,
                payload=payload,
                seq=next(self._seq),
            )
            self._history.append(event)
            if self._handlers and not self._closed:
                self._ensure_dispatcher()
                self._queue.put_nowait(event)
        logger.debug(f"[Events] {event.type.value} project={project_id} file={file_id}")
        return event

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def history(self, since: int = 0, project_id: Optional[str] = None) -> List[Event]:
        """
        Events with seq greater than `since`, oldest first.

        Args:
            since: Last sequence number the caller has seen
            project_id: Optional filter
        """
        with self._lock:
            events = [e for e in self._history if e.seq > since]
        if project_id is not None:
            events = [e for e in events if e.project_id == project_id]
        return events

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._history[-1].seq if self._history else 0

    def flush(self, timeout: float = 5.0) -> bool:
        """
        Wait until every queued event has been handed to subscribers.

        Returns:
            True if the queue drained within the timeout
        """
        done = threading.Event()
        with self._lock:
            if self._dispatcher is None:
                return True
            self._queue.put_nowait(_Marker(done))
        return done.wait(timeout)

    def close(self) -> None:
        """Stop the dispatcher after delivering queued events."""
        with self._lock:
            self._closed = True
            dispatcher = self._dispatcher
            if dispatcher is not None:
                self._queue.put_nowait(None)
        if dispatcher is not None:
            dispatcher.join(timeout=5.0)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None:
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name="kiln-events", daemon=True
            )
            self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            if isinstance(item, _Marker):
                item.done.set()
                continue

            with self._lock:
                handlers = list(self._handlers)
            for handler in handlers:
                try:
                    handler(item)
                except Exception as e:
                    logger.warning(f"[Events] Handler error for {item.type.value}: {e}")


class _Marker:
    """Queue sentinel used by flush()."""

    def __init__(self, done: threading.Event):
        self.done = done
