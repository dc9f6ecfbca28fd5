"""
JamCapture: multi-channel capture orchestration for PipeWire.

Subpackages:
- routing: pw-link port queries and connections
- encoder: multi-track ffmpeg process lifecycle
- recorder: capture state machine and source monitor
"""

__version__ = "0.1.0"
