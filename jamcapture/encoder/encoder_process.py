"""
Encoder process management for JamCapture.

EncoderProcess owns one multi-track ffmpeg subprocess recording JACK inputs
(through PipeWire's pw-jack shim) into a single container file. It builds the
command line from the channel list, starts the process with PipeWire latency
tuning, drains its diagnostic output on background threads, and stops it with
an interrupt followed by a forced kill if it does not exit in time.

The recorded file is what matters, not the exit code: after stop() the caller
validates the output with validate_output_file().
"""

from __future__ import annotations

import enum
import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from jamcapture.config import Channel
from jamcapture.encoder.drain_thread import OutputBuffer, OutputDrainThread
from jamcapture.errors import EncoderError, OutputValidationError

logger = logging.getLogger(__name__)


class StopOutcome(enum.Enum):
    """How the encoder went away."""
    CLEAN = "clean"                  # exit 0/255 or killed by an expected signal
    ABNORMAL_EXIT = "abnormal_exit"  # unexpected exit code; output decides
    FORCED = "forced"                # did not exit in time, killed
    NOT_RUNNING = "not_running"      # nothing to stop


DEFAULT_ENCODER_CMD = ["pw-jack", "ffmpeg"]

# Each channel becomes a JACK client named <prefix><channel>
JACK_CLIENT_PREFIX = "jamcapture_"

# Fixed PipeWire quantum/latency for the encoder's JACK clients
PIPEWIRE_ENV = {
    "PIPEWIRE_QUANTUM": "256/48000",
    "PIPEWIRE_LATENCY": "256/48000",
}

DEFAULT_STOP_TIMEOUT_SEC = 5.0
DRAIN_JOIN_TIMEOUT_SEC = 1.0

# Smallest output file accepted as a real recording
MIN_OUTPUT_BYTES = 1024

# ffmpeg exits 255 when interrupted; negative codes are "killed by signal N"
GRACEFUL_EXIT_CODES = frozenset({
    0,
    255,
    -signal.SIGINT,
    -signal.SIGTERM,
    -signal.SIGKILL,
})


def jack_client_name(channel_name: str) -> str:
    return f"{JACK_CLIENT_PREFIX}{channel_name}"


def encoder_input_port(channel_name: str, index: int) -> str:
    """Name of the encoder's input port ``index`` (1-based) for a channel."""
    return f"{jack_client_name(channel_name)}:input_{index}"


def build_encoder_cmd(
    channels: Sequence[Channel],
    output_file: str,
    sample_rate: int,
    codec: str,
    prefix: Optional[Sequence[str]] = None,
) -> List[str]:
    """
    Build the multi-track encoder command line.

    One JACK input per channel (1 or 2 ports), each mapped to its own output
    track titled with the channel name, in configuration order.
    """
    cmd = list(prefix) if prefix is not None else list(DEFAULT_ENCODER_CMD)

    for channel in channels:
        cmd += [
            "-f", "jack",
            "-channels", str(channel.input_channels),
            "-i", jack_client_name(channel.name),
        ]

    cmd += ["-ar", str(sample_rate)]

    for i, channel in enumerate(channels):
        cmd += ["-map", f"{i}:0", f"-metadata:s:a:{i}", f"title={channel.name}"]

    cmd += ["-c:a", codec, "-y", str(output_file)]
    return cmd


def validate_output_file(path: str, min_bytes: int = MIN_OUTPUT_BYTES) -> int:
    """
    Check that a recording produced a plausible file.

    Returns:
        File size in bytes

    Raises:
        OutputValidationError: File is missing or smaller than min_bytes
    """
    try:
        size = Path(path).stat().st_size
    except OSError:
        raise OutputValidationError(f"recording file not found: {path}")

    if size < min_bytes:
        raise OutputValidationError(f"recording failed: file too small ({size} bytes)")

    logger.debug(f"Output file validated: {path} ({size} bytes)")
    return size


class EncoderProcess:
    """
    Handle on one encoder subprocess.

    Created per recording; start() once, stop() once. Diagnostic output is
    accumulated in bounded buffers available via stdout_text / stderr_text.
    """

    def __init__(
        self,
        encoder_cmd: Optional[Sequence[str]] = None,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT_SEC,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> None:
        self._prefix = list(encoder_cmd) if encoder_cmd else list(DEFAULT_ENCODER_CMD)
        self._stop_timeout = stop_timeout
        self._extra_env = dict(PIPEWIRE_ENV)
        if extra_env:
            self._extra_env.update(extra_env)

        self._process: Optional[subprocess.Popen] = None
        self._cmd: List[str] = []
        self._started_at: Optional[float] = None
        self._returncode: Optional[int] = None

        self._stdout_buffer = OutputBuffer()
        self._stderr_buffer = OutputBuffer()
        self._stdout_thread: Optional[OutputDrainThread] = None
        self._stderr_thread: Optional[OutputDrainThread] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def cmd(self) -> List[str]:
        return list(self._cmd)

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    @property
    def stdout_text(self) -> str:
        return self._stdout_buffer.text()

    @property
    def stderr_text(self) -> str:
        return self._stderr_buffer.text()

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self, channels: Sequence[Channel], output_file: str, sample_rate: int, codec: str) -> None:
        """
        Spawn the encoder.

        Raises:
            EncoderError: Already started, or the process could not be spawned
        """
        if self._process is not None:
            raise EncoderError("encoder already started")

        cmd = build_encoder_cmd(channels, output_file, sample_rate, codec, prefix=self._prefix)
        env = os.environ.copy()
        env.update(self._extra_env)

        logger.info(f"Starting encoder: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                # Own session: terminal Ctrl+C must not reach the encoder before stop() does
                start_new_session=True,
            )
        except OSError as e:
            raise EncoderError(f"failed to start encoder ({cmd[0]}): {e}") from e

        self._process = process
        self._cmd = cmd
        self._started_at = time.monotonic()
        self._returncode = None
        logger.info(f"Started encoder PID={process.pid}")

        # Drain both pipes so a chatty encoder never blocks on a full pipe
        if process.stdout is not None:
            self._stdout_thread = OutputDrainThread(process.stdout, "stdout", self._stdout_buffer)
            self._stdout_thread.start()
        if process.stderr is not None:
            self._stderr_thread = OutputDrainThread(process.stderr, "stderr", self._stderr_buffer)
            self._stderr_thread.start()

    def stop(self, timeout: Optional[float] = None) -> StopOutcome:
        """
        Interrupt the encoder and wait for it to finalize the output file.

        Sends SIGINT (SIGKILL if signalling fails) and waits up to ``timeout``
        seconds. Past the deadline the process is killed; that still counts as
        a completed stop.

        Raises:
            EncoderError: The process could not be signalled or killed at all.
                The handle is kept so kill() can retry.
        """
        process = self._process
        if process is None:
            return StopOutcome.NOT_RUNNING

        wait_timeout = self._stop_timeout if timeout is None else timeout
        pid = process.pid
        reaped = False

        try:
            logger.debug(f"Sending SIGINT to encoder PID={pid}")
            try:
                process.send_signal(signal.SIGINT)
            except OSError as e:
                logger.debug(f"Failed to interrupt encoder PID={pid} ({e}), falling back to SIGKILL")
                self._kill(process)

            try:
                returncode = process.wait(timeout=wait_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Encoder PID={pid} did not exit within {wait_timeout}s, force killing")
                self._kill(process)
                self._returncode = process.wait()
                reaped = True
                return StopOutcome.FORCED

            self._returncode = returncode
            reaped = True
            if returncode in GRACEFUL_EXIT_CODES:
                logger.debug(f"Encoder PID={pid} exited normally (code {returncode})")
                return StopOutcome.CLEAN

            logger.warning(
                f"Encoder PID={pid} exited with unexpected code {returncode}; "
                f"last stderr:\n{self._stderr_buffer.tail()}"
            )
            return StopOutcome.ABNORMAL_EXIT
        finally:
            if reaped:
                self._join_drain_threads()
                self._process = None

    def kill(self) -> None:
        """Best-effort immediate termination, used during teardown."""
        process = self._process
        if process is None:
            return
        try:
            if process.poll() is None:
                self._kill(process)
                self._returncode = process.wait(timeout=DEFAULT_STOP_TIMEOUT_SEC)
        except (EncoderError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Error killing encoder PID={process.pid}: {e}")
        finally:
            self._join_drain_threads()
            self._process = None

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            # Already gone
            pass
        except OSError as e:
            raise EncoderError(f"failed to kill encoder PID={process.pid}: {e}") from e

    def _join_drain_threads(self) -> None:
        for thread in (self._stdout_thread, self._stderr_thread):
            if thread is not None and thread.is_alive():
                thread.join(timeout=DRAIN_JOIN_TIMEOUT_SEC)
                if thread.is_alive():
                    logger.warning(f"{thread.name} did not terminate within timeout")
        self._stdout_thread = None
        self._stderr_thread = None
