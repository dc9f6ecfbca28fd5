"""
JamCapture routing subsystem.

This package wraps the PipeWire routing graph:
- RoutingGraph: pw-link list/connect/disconnect
- PortDirectory: existence and duplicate queries
- PortConnectionManager: connections with per-source retry budgets
"""

from jamcapture.routing.connection_manager import (
    PortConnectionManager,
    RetryPolicy,
    is_ephemeral_port,
)
from jamcapture.routing.port_directory import PortDirectory, PortState
from jamcapture.routing.pw_link import RoutingGraph, parse_port_listing
from jamcapture.routing.source import (
    DISABLED,
    ActiveSource,
    DisabledSource,
    SourceRef,
    active_names,
    parse_source,
    parse_sources,
)

__all__ = [
    "ActiveSource",
    "DISABLED",
    "DisabledSource",
    "PortConnectionManager",
    "PortDirectory",
    "PortState",
    "RetryPolicy",
    "RoutingGraph",
    "SourceRef",
    "active_names",
    "is_ephemeral_port",
    "parse_port_listing",
    "parse_source",
    "parse_sources",
]
