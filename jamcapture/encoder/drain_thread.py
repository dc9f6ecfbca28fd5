"""
Encoder output drain thread.

This module provides OutputDrainThread, a dedicated thread that continuously
drains one of the encoder's diagnostic pipes (stdout or stderr) line by line,
so the encoder never blocks on a full pipe, and keeps a bounded copy of what it
read for post-mortem reporting.
"""

from __future__ import annotations

import logging
import threading
from typing import BinaryIO, List, Optional

logger = logging.getLogger(__name__)

# Keep at most this many characters per stream
DEFAULT_MAX_CHARS = 64 * 1024


class OutputBuffer:
    """Thread-safe text accumulator that drops the oldest text past max_chars."""

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self._max_chars = max_chars
        self._text = ""
        self._lock = threading.Lock()

    def append(self, line: str) -> None:
        new_line = line + "\n"
        with self._lock:
            combined = self._text + new_line
            if len(combined) > self._max_chars:
                combined = combined[len(combined) - self._max_chars:]
            self._text = combined

    def text(self) -> str:
        with self._lock:
            return self._text

    def tail(self, lines: int = 20) -> str:
        with self._lock:
            parts: List[str] = self._text.splitlines()
        return "\n".join(parts[-lines:])

    def clear(self) -> None:
        with self._lock:
            self._text = ""


class OutputDrainThread(threading.Thread):
    """
    Dedicated thread that drains one encoder output pipe until EOF.

    Attributes:
        stream: Pipe to read (binary, blocking)
        label: "stdout" or "stderr", used in log lines
        buffer: OutputBuffer receiving decoded lines
    """

    def __init__(self, stream: BinaryIO, label: str, buffer: Optional[OutputBuffer] = None) -> None:
        super().__init__(name=f"EncoderDrain-{label}", daemon=True)
        self.stream = stream
        self.label = label
        self.buffer = buffer if buffer is not None else OutputBuffer()
        self.lines_read = 0

    def run(self) -> None:
        logger.debug(f"Encoder {self.label} drain thread started")
        try:
            while True:
                try:
                    line = self.stream.readline()
                except (OSError, ValueError) as e:
                    # Pipe closed underneath us
                    logger.debug(f"Encoder {self.label} read error (likely closed): {e}")
                    break

                if not line:
                    # EOF - encoder closed the stream
                    break

                if isinstance(line, bytes):
                    decoded = line.decode(errors="ignore").rstrip()
                else:
                    decoded = str(line).rstrip()
                if not decoded:
                    continue

                self.lines_read += 1
                self.buffer.append(decoded)
                logger.debug(f"[FFMPEG] {self.label}: {decoded}")
        finally:
            try:
                self.stream.close()
            except (OSError, ValueError):
                pass
            logger.debug(f"Encoder {self.label} drain thread exiting")
