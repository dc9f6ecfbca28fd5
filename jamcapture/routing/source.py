"""
Source references for channel configuration.

Configuration files spell a disabled slot as an empty string or the word
"disabled". Those strings are parsed once here into a two-variant type so the
rest of the engine only ever sees ActiveSource(name) or DISABLED.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

DISABLED_MARKERS = ("", "disabled")


@dataclass(frozen=True)
class ActiveSource:
    """A routing-graph port that should feed a channel."""
    name: str

    @property
    def enabled(self) -> bool:
        return True

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class DisabledSource:
    """Placeholder for a slot that is intentionally left unconnected."""

    @property
    def enabled(self) -> bool:
        return False

    def __str__(self) -> str:
        return "disabled"


DISABLED = DisabledSource()

SourceRef = Union[ActiveSource, DisabledSource]


def parse_source(raw: Optional[str]) -> SourceRef:
    """Parse a configured source string. None, "" and "disabled" map to DISABLED."""
    if raw is None:
        return DISABLED
    name = raw.strip()
    if name.lower() in DISABLED_MARKERS:
        return DISABLED
    return ActiveSource(name)


def parse_sources(raw: Iterable[Optional[str]]) -> Tuple[SourceRef, ...]:
    return tuple(parse_source(item) for item in raw)


def active_names(sources: Iterable[SourceRef]) -> List[str]:
    """Port names of the enabled sources, in configured order."""
    return [s.name for s in sources if isinstance(s, ActiveSource)]
