# Vault - Inactivity Timer
#
# One daemon thread per timer, sleeping on a Condition until the current
# deadline. touch() only moves the deadline and notifies, so activity
# signals stay O(1) and never wait on encryption work.

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class InactivityTimer:
    """Fires ``on_expire`` once when no touch() arrives within ``timeout``.

    After firing, the timer is disarmed until the next touch().
    """

    def __init__(
        self,
        timeout: float,
        on_expire: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._timeout = timeout
        self._on_expire = on_expire
        self._clock = clock
        self._cond = threading.Condition()
        self._deadline: Optional[float] = None
        self._stopped = False
        self._thread: Optional[threading.Thread] = None

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_armed(self) -> bool:
        with self._cond:
            return self._deadline is not None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def set_timeout(self, timeout: float) -> None:
        """Change the timeout; an armed timer restarts its countdown."""
        with self._cond:
            self._timeout = timeout
            if self._deadline is not None:
                self._deadline = self._clock() + timeout
            self._cond.notify()

    def touch(self) -> None:
        """Arm (or re-arm) the timer from now."""
        with self._cond:
            if self._stopped:
                return
            self._deadline = self._clock() + self._timeout
            self._ensure_thread()
            self._cond.notify()

    def cancel(self) -> None:
        """Disarm without stopping the thread."""
        with self._cond:
            self._deadline = None
            self._cond.notify()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._deadline = None
            self._cond.notify()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        self._thread = None

    def _ensure_thread(self) -> None:
        # Caller holds self._cond
        if self.is_running:
            return
        self._thread = threading.Thread(
            target=self._run, name="vault-auto-lock", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopped:
                    if self._deadline is None:
                        self._cond.wait()
                        continue
                    remaining = self._deadline - self._clock()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
                if self._stopped:
                    return
                self._deadline = None

            # Outside the condition so the callback may touch()/cancel()
            try:
                self._on_expire()
            except Exception:
                logger.exception("Auto-lock callback failed")
