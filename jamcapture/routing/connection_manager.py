"""
Port connection manager.

Connects a source port to a destination port with a retry budget that depends
on what kind of source it is. Interactive applications (browsers, media and
chat apps) routinely create their output ports late or recreate them, so they
get a longer budget than hardware capture ports.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from jamcapture.errors import PortConnectionError, RoutingError
from jamcapture.routing.port_directory import PortDirectory

logger = logging.getLogger(__name__)

# Substrings (lower case) identifying ephemeral application ports
EPHEMERAL_APPS = (
    "chrome", "firefox", "spotify", "discord", "steam",
    "vlc", "mpv", "zoom", "teams", "slack", "wire",
)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    delay_sec: float


EPHEMERAL_POLICY = RetryPolicy(attempts=15, delay_sec=1.0)
STABLE_POLICY = RetryPolicy(attempts=5, delay_sec=0.5)

PORT_POLL_INTERVAL_SEC = 0.1


def is_ephemeral_port(port_name: str) -> bool:
    lowered = port_name.lower()
    return any(app in lowered for app in EPHEMERAL_APPS)


class PortConnectionManager:
    """
    Connects named ports on the routing graph, masking transient absence.

    Args:
        directory: PortDirectory used for existence checks and the graph itself
        ephemeral_policy: Retry budget for application ports
        stable_policy: Retry budget for hardware ports
    """

    def __init__(
        self,
        directory: PortDirectory,
        ephemeral_policy: RetryPolicy = EPHEMERAL_POLICY,
        stable_policy: RetryPolicy = STABLE_POLICY,
    ) -> None:
        self._directory = directory
        self._ephemeral_policy = ephemeral_policy
        self._stable_policy = stable_policy

    def policy_for(self, source: str) -> RetryPolicy:
        if is_ephemeral_port(source):
            return self._ephemeral_policy
        return self._stable_policy

    def connect_with_retry(
        self,
        source: str,
        dest: str,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Connect ``source`` to ``dest``, retrying per the source's policy.

        Each attempt first checks that the source exists and only then runs the
        actual connection. A failed connection is retried like a missing port.

        Args:
            source: Source port name
            dest: Destination port name
            stop_event: Optional event; when set the remaining attempts are abandoned

        Returns:
            The attempt number that succeeded

        Raises:
            PortConnectionError: All attempts exhausted (or abandoned via stop_event)
        """
        policy = self.policy_for(source)
        kind = "ephemeral" if policy is self._ephemeral_policy else "hardware"
        logger.debug(f"Using {kind} port retry strategy for {source} ({policy.attempts} attempts)")

        for attempt in range(1, policy.attempts + 1):
            if self._directory.port_exists(source):
                try:
                    self._directory.graph.connect(source, dest)
                    logger.debug(f"Connected {source} -> {dest} on attempt {attempt}")
                    return attempt
                except RoutingError as e:
                    logger.debug(f"Connection attempt {attempt} failed for {source} -> {dest}: {e}")
            else:
                logger.debug(f"Source port {source} not yet available (attempt {attempt})")

            if attempt < policy.attempts:
                if self._wait(policy.delay_sec, stop_event):
                    logger.debug(f"Connection of {source} -> {dest} abandoned after {attempt} attempts")
                    raise PortConnectionError(source, dest, attempt)

        raise PortConnectionError(source, dest, policy.attempts)

    def wait_for_port(
        self,
        port_name: str,
        timeout: float,
        stop_event: Optional[threading.Event] = None,
        interval: float = PORT_POLL_INTERVAL_SEC,
    ) -> bool:
        """Poll until ``port_name`` exists. Returns False on timeout or stop."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._directory.port_exists(port_name):
                logger.debug(f"Port found: {port_name}")
                return True
            if self._wait(interval, stop_event):
                return False
        return False

    def disconnect(self, source: str, dest: str) -> None:
        self._directory.graph.disconnect(source, dest)

    @staticmethod
    def _wait(delay: float, stop_event: Optional[threading.Event]) -> bool:
        """Sleep for ``delay``; returns True if stop_event fired meanwhile."""
        if stop_event is None:
            time.sleep(delay)
            return False
        return stop_event.wait(delay)
