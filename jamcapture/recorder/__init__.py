"""
JamCapture recorder subsystem.

This package provides the capture orchestration components:
- CaptureStateMachine: prepare/cancel/stop and auto-promotion to recording
- SourceMonitor: background source availability polling
- ChannelStatusCache: per-channel status, frozen while recording
- Session / CaptureStatus / ChannelStatus: state records
"""

from jamcapture.recorder.capture_machine import CaptureStateMachine, default_encoder_factory
from jamcapture.recorder.channel_status import (
    CacheState,
    ChannelStatusCache,
    SourceCheck,
    check_sources,
    clean_file_name,
    evaluate_channels,
)
from jamcapture.recorder.source_monitor import SourceMonitor
from jamcapture.recorder.state import CaptureStatus, ChannelStatus, Session

__all__ = [
    "CacheState",
    "CaptureStateMachine",
    "CaptureStatus",
    "ChannelStatus",
    "ChannelStatusCache",
    "Session",
    "SourceCheck",
    "SourceMonitor",
    "check_sources",
    "clean_file_name",
    "default_encoder_factory",
    "evaluate_channels",
]
