"""
Background refresh loop for the access token.
State machine IDLE -> RUNNING -> STOPPED; STOPPED is terminal for an instance.
Each cycle: persist (async) -> sleep until near expiry -> refresh_token grant -> continue or stop.
"""
import enum
import logging
import threading
from typing import Callable

from calendar_client.errors import TokenExchangeError
from calendar_client.manager import CredentialManager

logger = logging.getLogger(__name__)

# Refresh this many seconds before the access token expires
SAFETY_MARGIN_SECONDS = 60


class SupervisorState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


def sleep_duration(expires_in: int, safety_margin: int = SAFETY_MARGIN_SECONDS) -> int:
    """Seconds to wait before refreshing; never negative."""
    return max(0, expires_in - safety_margin)


class RefreshSupervisor:
    """
    Keeps the stored access token fresh until a refresh fails or stop() is called.

    wait(seconds) -> bool suspends the loop and returns True when it should stop; it defaults to
    the internal stop event so stop() interrupts a pending sleep. Tests inject their own wait
    and drive the loop with run_cycle().
    """

    def __init__(
        self,
        manager: CredentialManager,
        safety_margin_seconds: int = SAFETY_MARGIN_SECONDS,
        wait: Callable[[float], bool] | None = None,
        on_stopped: Callable[[], None] | None = None,
    ):
        self.manager = manager
        self.safety_margin_seconds = safety_margin_seconds
        self.on_stopped = on_stopped
        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait
        self._lock = threading.Lock()
        self._state = SupervisorState.IDLE
        self._thread: threading.Thread | None = None
        self._persist_thread: threading.Thread | None = None

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return self.state is SupervisorState.RUNNING

    def start(self) -> bool:
        """Start the loop thread. Returns False (no-op) unless the supervisor is IDLE."""
        with self._lock:
            if self._state is not SupervisorState.IDLE:
                return False
            self._state = SupervisorState.RUNNING
            self._thread = threading.Thread(target=self._run, name="token-refresh", daemon=True)
            self._thread.start()
        logger.info("Refresh supervisor started")
        return True

    def stop(self, timeout: float | None = None) -> None:
        """Request shutdown and wait for the loop and any in-flight persistence write."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if self._persist_thread is not None:
            self._persist_thread.join(timeout)
        self._mark_stopped()

    def _run(self) -> None:
        while self.run_cycle():
            pass

    def _mark_stopped(self) -> bool:
        """Move to STOPPED. Returns True if this call made the transition."""
        with self._lock:
            if self._state is SupervisorState.STOPPED:
                return False
            self._state = SupervisorState.STOPPED
        return True

    def _persist_async(self) -> None:
        if not self.manager.persist_enabled:
            return
        # Snapshot now; a failed refresh may clear the store before the thread runs
        credential = self.manager.store.snapshot()
        self._persist_thread = threading.Thread(
            target=self.manager.persist, args=(credential,), name="credential-persist", daemon=True
        )
        self._persist_thread.start()

    def run_cycle(self) -> bool:
        """One loop iteration. Returns True if the loop should continue."""
        if self._stop_event.is_set():
            self._mark_stopped()
            return False

        self._persist_async()

        delay = sleep_duration(self.manager.store.snapshot().expires_in, self.safety_margin_seconds)
        logger.debug("Next token refresh in %ss", delay)
        if self._wait(delay) or self._stop_event.is_set():
            if self._mark_stopped():
                logger.info("Refresh supervisor stopped")
            return False

        try:
            self.manager.refresh()
        except TokenExchangeError as e:
            # Store already cleared by the exchanger; a new interactive login is needed
            logger.warning("Token refresh failed, refresh supervisor stopping: %s", e)
            if self._mark_stopped() and self.on_stopped is not None:
                self.on_stopped()
            return False
        return True
