"""
Keyed trailing-edge debounce.

Values pushed for the same key within the delay window collapse into the
most recent one, which is delivered once the key has been quiet for the
full delay. Editors that save through a temp file and rename produce a
burst of events per path; this turns the burst into one change.
"""

import logging
import threading
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Debouncer(Generic[K, V]):
    """
    Args:
        delay: Quiet period in seconds. 0 delivers synchronously.
        callback: Called as callback(key, value) from a timer thread
    """

    def __init__(self, delay: float, callback: Callable[[K, V], None]):
        self.delay = delay
        self._callback = callback
        self._pending: Dict[K, Tuple[V, Optional[threading.Timer]]] = {}
        self._lock = threading.Lock()

    def push(self, key: K, value: V) -> None:
        if self.delay <= 0:
            self._deliver(key, value)
            return

        timer = threading.Timer(self.delay, self._fire, args=(key,))
        timer.daemon = True
        with self._lock:
            previous = self._pending.get(key)
            if previous is not None and previous[1] is not None:
                previous[1].cancel()
            self._pending[key] = (value, timer)
        timer.start()

    def _fire(self, key: K) -> None:
        with self._lock:
            entry = self._pending.get(key)
            # A newer push replaced this timer
            if entry is None or entry[1] is not threading.current_thread():
                return
            del self._pending[key]
        self._deliver(key, entry[0])

    def _deliver(self, key: K, value: V) -> None:
        try:
            self._callback(key, value)
        except Exception:
            logger.exception(f"Debounced callback failed for {key!r}")

    def flush(self) -> int:
        """Deliver every pending value now. Returns the number delivered."""
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for key, (value, timer) in pending:
            if timer is not None:
                timer.cancel()
            self._deliver(key, value)
        return len(pending)

    def discard(self, predicate: Callable[[K], bool]) -> int:
        """Drop pending values whose key matches. Returns the number dropped."""
        with self._lock:
            doomed = [k for k in self._pending if predicate(k)]
            for key in doomed:
                _, timer = self._pending.pop(key)
                if timer is not None:
                    timer.cancel()
        return len(doomed)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
