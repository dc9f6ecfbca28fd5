"""
Source availability monitor.

SourceMonitor is a background thread that runs for one READY/ERROR window.
Each tick it asks for the current capture status and a fresh source check and
hands the outcome to exactly one of the callbacks it was given:

    READY + duplicates       -> on_duplicates   (abandon, terminate)
    ERROR + duplicates       -> keep polling
    ERROR + no duplicates    -> on_recovered    (terminate)
    READY + all sources up   -> on_ready        (promote, terminate)
    any other status         -> terminate
    window elapsed           -> on_timeout      (terminate)

The monitor holds only these callables; it knows nothing about the state
machine behind them.
"""

import logging
import threading
import time
from typing import Callable, Optional

from jamcapture.recorder.channel_status import SourceCheck
from jamcapture.recorder.state import CaptureStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 0.5
DEFAULT_WINDOW_SEC = 30.0
DEFAULT_JOIN_TIMEOUT_SEC = 10.0


class SourceMonitor(threading.Thread):
    """
    Polls source availability until a decision is made, the window expires,
    or stop() is called.

    Args:
        get_status: Returns the current CaptureStatus
        check_sources: Returns a fresh SourceCheck
        on_duplicates: Called when duplicates appear while READY
        on_recovered: Called when duplicates clear while ERROR
        on_ready: Called with the SourceCheck that found every source available
        on_timeout: Called when the window elapses without a decision
        poll_interval: Seconds between ticks
        window: Seconds from start until on_timeout
    """

    def __init__(
        self,
        get_status: Callable[[], CaptureStatus],
        check_sources: Callable[[], SourceCheck],
        on_duplicates: Callable[[], None],
        on_recovered: Callable[[], None],
        on_ready: Callable[[SourceCheck], None],
        on_timeout: Callable[[], None],
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
        window: float = DEFAULT_WINDOW_SEC,
        name: str = "SourceMonitor",
    ) -> None:
        super().__init__(name=name, daemon=True)
        self._get_status = get_status
        self._check_sources = check_sources
        self._on_duplicates = on_duplicates
        self._on_recovered = on_recovered
        self._on_ready = on_ready
        self._on_timeout = on_timeout
        self.poll_interval = poll_interval
        self.window = window
        self._stop_event = threading.Event()
        self.ticks = 0

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        deadline = time.monotonic() + self.window
        logger.debug(f"{self.name} started (poll={self.poll_interval}s, window={self.window}s)")
        try:
            while not self._stop_event.wait(self.poll_interval):
                if time.monotonic() >= deadline:
                    logger.warning(f"Sources not ready within {self.window:g}s, giving up")
                    self._on_timeout()
                    return
                self.ticks += 1
                if not self._tick():
                    return
        except Exception as e:
            logger.error(f"{self.name} failed: {e}", exc_info=True)
        finally:
            logger.debug(f"{self.name} exiting after {self.ticks} ticks")

    def _tick(self) -> bool:
        """One poll. Returns False when the monitor should terminate."""
        status = self._get_status()
        if status not in (CaptureStatus.READY, CaptureStatus.ERROR):
            logger.debug(f"{self.name}: status is {status.value}, nothing left to watch")
            return False

        check = self._check_sources()
        if self._stop_event.is_set():
            return False

        if check.listing_failed:
            # No information this tick; neither a recovery nor a promotion
            return True

        if check.has_duplicates:
            if status is CaptureStatus.READY:
                logger.warning("Duplicate sources appeared while ready, abandoning session")
                self._on_duplicates()
                return False
            logger.debug("Duplicate sources still present, waiting")
            return True

        if status is CaptureStatus.ERROR:
            logger.info("Duplicate sources resolved, returning to standby")
            self._on_recovered()
            return False

        if check.ready:
            logger.info("All sources available, starting recording")
            self._on_ready(check)
            return False

        return True

    def request_stop(self) -> None:
        """Signal the thread to exit without waiting for it."""
        self._stop_event.set()

    def stop(self, timeout: Optional[float] = DEFAULT_JOIN_TIMEOUT_SEC) -> None:
        """
        Signal the thread and wait for it to exit.

        Idempotent. Safe to call from the monitor's own callbacks, in which
        case it only signals.
        """
        self._stop_event.set()
        if threading.current_thread() is self or not self.is_alive():
            return
        self.join(timeout=timeout)
        if self.is_alive():
            logger.warning(f"{self.name} did not terminate within {timeout}s")
