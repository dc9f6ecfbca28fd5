"""
JamCapture encoder subsystem.

This package provides the encoder components:
- EncoderProcess: multi-track ffmpeg process lifecycle
- OutputDrainThread: drains encoder stdout/stderr into bounded buffers
"""

from jamcapture.encoder.drain_thread import OutputBuffer, OutputDrainThread
from jamcapture.encoder.encoder_process import (
    EncoderProcess,
    StopOutcome,
    build_encoder_cmd,
    encoder_input_port,
    jack_client_name,
    validate_output_file,
)

__all__ = [
    "EncoderProcess",
    "OutputBuffer",
    "OutputDrainThread",
    "StopOutcome",
    "build_encoder_cmd",
    "encoder_input_port",
    "jack_client_name",
    "validate_output_file",
]
