"""
Channel availability evaluation and the channel status cache.

evaluate_channels() turns one routing-graph listing into a per-channel status
map plus the two facts the monitor acts on: are there duplicates, and is every
configured channel fully connectable.
"""

import enum
import logging
import string
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from jamcapture.config import Channel
from jamcapture.errors import RoutingError
from jamcapture.recorder.state import ChannelStatus
from jamcapture.routing.port_directory import PortDirectory, PortState

logger = logging.getLogger(__name__)

_PORT_TO_CHANNEL_STATUS = {
    PortState.AVAILABLE: ChannelStatus.AVAILABLE,
    PortState.UNAVAILABLE: ChannelStatus.UNAVAILABLE,
    PortState.DUPLICATE: ChannelStatus.DUPLICATE,
}


@dataclass
class SourceCheck:
    """Result of checking every configured source against one port listing."""
    statuses: Dict[str, ChannelStatus] = field(default_factory=dict)
    has_duplicates: bool = False
    ready: bool = False
    listing_failed: bool = False


def evaluate_channels(
    channels: Sequence[Channel],
    directory: PortDirectory,
    ports: Sequence[str],
) -> SourceCheck:
    """
    Classify each channel from a port listing.

    A channel is duplicate if any enabled source is duplicated, otherwise
    unavailable if any enabled source is missing, otherwise available.
    Channels without an enabled source are unknown and do not count towards
    readiness. Ready means at least one channel has enabled sources and all
    such channels are available.
    """
    check = SourceCheck()
    checked = 0
    available = 0

    for channel in channels:
        names = channel.active_sources
        if not names:
            check.statuses[channel.name] = ChannelStatus.UNKNOWN
            continue

        checked += 1
        states = [directory.classify(name, ports) for name in names]
        if PortState.DUPLICATE in states:
            state = PortState.DUPLICATE
            check.has_duplicates = True
        elif PortState.UNAVAILABLE in states:
            state = PortState.UNAVAILABLE
        else:
            state = PortState.AVAILABLE
            available += 1
        check.statuses[channel.name] = _PORT_TO_CHANNEL_STATUS[state]

    check.ready = checked > 0 and available == checked and not check.has_duplicates
    return check


def check_sources(channels: Sequence[Channel], directory: PortDirectory) -> SourceCheck:
    """List the graph once and evaluate every channel; listing failure is "not ready"."""
    try:
        ports = directory.list_ports()
    except RoutingError as e:
        logger.warning(f"Failed to list audio ports: {e}")
        return SourceCheck(
            statuses={channel.name: ChannelStatus.UNKNOWN for channel in channels},
            listing_failed=True,
        )
    return evaluate_channels(channels, directory, ports)


class CacheState(enum.Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    FROZEN = "frozen"


class ChannelStatusCache:
    """
    Last computed channel statuses.

    EMPTY until the first store. FRESH after a store. FROZEN while recording:
    the snapshot taken at freeze time is served and stores are ignored until
    thaw() resets the cache to EMPTY.
    """

    def __init__(self) -> None:
        self._state = CacheState.EMPTY
        self._snapshot: Dict[str, ChannelStatus] = {}
        self._lock = threading.Lock()

    @property
    def state(self) -> CacheState:
        with self._lock:
            return self._state

    def get(self) -> Optional[Dict[str, ChannelStatus]]:
        with self._lock:
            if self._state is CacheState.EMPTY:
                return None
            return dict(self._snapshot)

    def store(self, statuses: Dict[str, ChannelStatus]) -> bool:
        """Returns False when the cache is frozen and the write was dropped."""
        with self._lock:
            if self._state is CacheState.FROZEN:
                return False
            self._snapshot = dict(statuses)
            self._state = CacheState.FRESH
            return True

    def freeze(self, statuses: Optional[Dict[str, ChannelStatus]] = None) -> None:
        with self._lock:
            if statuses is not None:
                self._snapshot = dict(statuses)
            self._state = CacheState.FROZEN

    def thaw(self) -> None:
        with self._lock:
            self._snapshot = {}
            self._state = CacheState.EMPTY


FILE_NAME_CHARS = frozenset(string.ascii_letters + string.digits + " -_")


def clean_file_name(name: str) -> str:
    """Keep ASCII letters, digits, spaces, '-' and '_'; trim; spaces become underscores."""
    kept = "".join(c for c in name if c in FILE_NAME_CHARS)
    return kept.strip().replace(" ", "_")
