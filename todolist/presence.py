"""
Typing-aware periodic profile refresh.

TypingTracker     — keystroke/focus start a debounce window; blur ends it
ProfileRefresher  — background thread re-reading the session user every
                    interval, skipping the tick while the user is typing
"""
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TypingTracker:
    """
    Debounced "user is typing" flag.

    keystroke() and focus() (re)start the debounce window; blur() and
    dispose() clear it immediately. Expiry is checked lazily against the
    clock, so no timer thread is needed.
    """

    def __init__(self, debounce_secs: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.debounce_secs = debounce_secs
        self._clock = clock
        self._until: Optional[float] = None
        self._lock = threading.Lock()

    def keystroke(self):
        with self._lock:
            self._until = self._clock() + self.debounce_secs

    focus = keystroke

    def blur(self):
        with self._lock:
            self._until = None

    dispose = blur

    @property
    def is_typing(self) -> bool:
        with self._lock:
            if self._until is None:
                return False
            if self._clock() >= self._until:
                self._until = None
                return False
            return True


class ProfileRefresher:
    """Calls `refresh()` every `interval` seconds unless `is_busy()` says not to."""

    def __init__(self, refresh: Callable[[], None], is_busy: Callable[[], bool],
                 interval: float = 30.0):
        self.refresh = refresh
        self.is_busy = is_busy
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> bool:
        """One refresh attempt. Returns True when the refresh ran."""
        if self.is_busy():
            logger.debug("Profile refresh skipped: user is typing")
            return False
        try:
            self.refresh()
        except Exception as e:
            logger.warning(f"Profile refresh failed: {e}")
        return True

    def _run(self):
        while not self._stop.wait(self.interval):
            self.tick()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="profile-refresh", daemon=True)
        self._thread.start()
        logger.info(f"Profile refresh every {self.interval:.0f}s")

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
