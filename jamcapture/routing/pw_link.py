"""
PipeWire routing graph access via the ``pw-link`` command-line tool.

RoutingGraph is the only place that shells out to pw-link. Everything above
it (PortDirectory, PortConnectionManager) works on plain port-name strings so
it can be exercised against an in-memory graph in tests.
"""

import logging
import subprocess
from typing import List, Optional, Sequence

from jamcapture.errors import RoutingError

logger = logging.getLogger(__name__)

PW_LINK_BIN = "pw-link"

# Section headers some pw-link versions print with -io
_LISTING_HEADERS = ("Input ports:", "Output ports:")


def parse_port_listing(output: str) -> List[str]:
    """
    Parse ``pw-link -io`` output into an ordered list of port names.

    Repeated names are preserved: a port listed twice is exactly the
    duplicate condition callers need to detect.
    """
    ports: List[str] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line.startswith(_LISTING_HEADERS):
            continue
        ports.append(line)
    return ports


class RoutingGraph:
    """Thin wrapper around pw-link: list, connect and disconnect ports."""

    def __init__(self, pw_link_bin: str = PW_LINK_BIN, timeout: float = 5.0) -> None:
        self._bin = pw_link_bin
        self._timeout = timeout

    def list_ports(self) -> List[str]:
        output = self._run(["-io"], friendly_name="list ports")
        return parse_port_listing(output)

    def connect(self, source: str, dest: str) -> None:
        self._run([source, dest], friendly_name=f"connect {source} -> {dest}")
        logger.debug(f"Connected ports {source} -> {dest}")

    def disconnect(self, source: str, dest: str) -> None:
        self._run(["-d", source, dest], friendly_name=f"disconnect {source} -> {dest}")
        logger.debug(f"Disconnected ports {source} -> {dest}")

    def _run(self, args: Sequence[str], friendly_name: Optional[str] = None) -> str:
        cmd = [self._bin, *args]
        label = friendly_name or " ".join(cmd)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise RoutingError(f"{self._bin} executable not found; install PipeWire CLI tools") from e
        except subprocess.TimeoutExpired as e:
            raise RoutingError(f"{self._bin} {label} timed out after {self._timeout}s") from e
        except OSError as e:
            raise RoutingError(f"failed to execute {' '.join(cmd)}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or "").strip() or (result.stdout or "").strip() or "unknown error"
            raise RoutingError(f"{self._bin} {label} failed (exit {result.returncode}): {detail}")

        return result.stdout or ""
