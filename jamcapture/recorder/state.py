"""
Capture status and session records.

The state machine owns the only live Session; everything handed out to callers
is a copy made with Session.copy().
"""

import copy
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class CaptureStatus(enum.Enum):
    STANDBY = "STANDBY"
    READY = "READY"
    RECORDING = "RECORDING"
    ERROR = "ERROR"


class ChannelStatus(enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DUPLICATE = "duplicate"
    UNKNOWN = "unknown"


@dataclass
class Session:
    """
    One prepared or in-progress capture.

    Attributes:
        song_name: Name as given by the caller
        start_time: When the session was prepared
        output_file: Absolute path of the recording
        channel_names: Configured channel names, in encoder track order
        recording_started: When the encoder was started (None while waiting)
    """
    song_name: str
    start_time: datetime
    output_file: str
    channel_names: List[str] = field(default_factory=list)
    recording_started: Optional[datetime] = None

    @property
    def channel_count(self) -> int:
        return len(self.channel_names)

    def copy(self) -> "Session":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "song_name": self.song_name,
            "start_time": self.start_time.isoformat(),
            "recording_started": (
                self.recording_started.isoformat() if self.recording_started else None
            ),
            "output_file": self.output_file,
            "channel_count": self.channel_count,
            "channel_names": list(self.channel_names),
        }
