"""
Port directory: existence and duplicate queries over the routing graph.

Equality is exact string match. "Chrome:output_FL" listed twice is a
duplicate; "Chrome-2:output_FL" next to it is a different port.
"""

import enum
import logging
from typing import List, Optional, Sequence

from jamcapture.errors import DuplicateSourceError, RoutingError, SourceUnavailableError
from jamcapture.routing.pw_link import RoutingGraph
from jamcapture.routing.source import DISABLED_MARKERS

logger = logging.getLogger(__name__)


class PortState(enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DUPLICATE = "duplicate"


class PortDirectory:
    """
    Answers questions about named ports on a RoutingGraph.

    Every query accepts an optional pre-fetched ``ports`` listing so that a
    caller checking many sources in one pass lists the graph only once.
    """

    def __init__(self, graph: RoutingGraph) -> None:
        self._graph = graph

    @property
    def graph(self) -> RoutingGraph:
        return self._graph

    def list_ports(self) -> List[str]:
        return self._graph.list_ports()

    def find_duplicates(self, name: str, ports: Optional[Sequence[str]] = None) -> List[str]:
        """All entries exactly equal to ``name``. One entry is normal, more is a conflict."""
        if ports is None:
            ports = self._graph.list_ports()
        return [port for port in ports if port == name]

    def count(self, name: str, ports: Optional[Sequence[str]] = None) -> int:
        return len(self.find_duplicates(name, ports))

    def port_exists(self, name: str, ports: Optional[Sequence[str]] = None) -> bool:
        if ports is None:
            try:
                ports = self._graph.list_ports()
            except RoutingError as e:
                logger.debug(f"Failed to check port existence for {name}: {e}")
                return False
        return name in ports

    def classify(self, name: str, ports: Optional[Sequence[str]] = None) -> PortState:
        matches = self.count(name, ports)
        if matches == 0:
            return PortState.UNAVAILABLE
        if matches > 1:
            return PortState.DUPLICATE
        return PortState.AVAILABLE

    def validate_port(self, name: str, ports: Optional[Sequence[str]] = None) -> None:
        """
        Raise if ``name`` cannot be used as a recording source.

        Disabled/empty names always pass.

        Raises:
            SourceUnavailableError: port is not in the graph
            DuplicateSourceError: port appears more than once
            RoutingError: the graph could not be listed
        """
        if name.strip().lower() in DISABLED_MARKERS:
            return
        matches = self.find_duplicates(name, ports)
        if not matches:
            raise SourceUnavailableError(name)
        if len(matches) > 1:
            raise DuplicateSourceError(name, matches)
