import asyncio
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Subscription:
    """Cancellation handle for one live watch.

    Snapshots may arrive on any thread (Firestore runs watch callbacks on its own
    worker). They are handed to the owning event loop and delivered there. Once
    cancel() has returned, no new callback invocation starts; one already running
    is allowed to finish, and anything still queued is dropped.
    """

    def __init__(self, name: str, callback: Callable[[Any], None],
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.name = name
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._lock = threading.RLock()
        self._cancelled = False
        self._watch = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, watch) -> None:
        """Bind the underlying store watch; unsubscribes at once if already cancelled."""
        with self._lock:
            if not self._cancelled:
                self._watch = watch
                return
        watch.unsubscribe()

    def deliver(self, value: Any) -> None:
        """Queue a value for the consumer. Safe to call from any thread."""
        if self._cancelled:
            return
        try:
            self._loop.call_soon_threadsafe(self._dispatch, value)
        except RuntimeError:
            # Loop already closed: the consumer is gone.
            logger.debug("Dropping delivery for %s: event loop closed", self.name)

    def _dispatch(self, value: Any) -> None:
        with self._lock:
            if self._cancelled:
                logger.debug("Dropping late delivery for cancelled subscription %s", self.name)
                return
            try:
                self._callback(value)
            except Exception:
                logger.exception("Subscriber callback for %s raised", self.name)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            watch, self._watch = self._watch, None
        if watch is not None:
            try:
                watch.unsubscribe()
            except Exception as e:
                logger.warning("Error closing watch for %s: %s", self.name, e)
        logger.debug("Subscription %s cancelled", self.name)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
