"""
Contract tests for EncoderProcess.

Covers: command construction, spawn environment, double start, stop outcomes
(clean, abnormal, forced, not running), output validation, drain buffers.
"""

import io
import signal
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from jamcapture.encoder.drain_thread import OutputBuffer, OutputDrainThread
from jamcapture.encoder.encoder_process import (
    EncoderProcess,
    StopOutcome,
    build_encoder_cmd,
    encoder_input_port,
    validate_output_file,
)
from jamcapture.errors import EncoderError, OutputValidationError

from jamcapture.tests.contracts.test_doubles import make_channel


POPEN = "jamcapture.encoder.encoder_process.subprocess.Popen"


@pytest.fixture
def channels():
    return [
        make_channel("guitar", "system:capture_1"),
        make_channel("backing", "Chrome:output_FL", "Chrome:output_FR"),
    ]


def _mock_process(returncode=255, pid=1234, stderr=b""):
    process = MagicMock()
    process.pid = pid
    process.stdout = io.BytesIO(b"")
    process.stderr = io.BytesIO(stderr)
    process.poll.return_value = None
    process.wait.return_value = returncode
    return process


class TestBuildEncoderCmd:

    def test_full_command(self, channels):
        cmd = build_encoder_cmd(channels, "/rec/song.mkv", 48000, "flac")

        assert cmd == [
            "pw-jack", "ffmpeg",
            "-f", "jack", "-channels", "1", "-i", "jamcapture_guitar",
            "-f", "jack", "-channels", "2", "-i", "jamcapture_backing",
            "-ar", "48000",
            "-map", "0:0", "-metadata:s:a:0", "title=guitar",
            "-map", "1:0", "-metadata:s:a:1", "title=backing",
            "-c:a", "flac", "-y", "/rec/song.mkv",
        ]

    def test_custom_prefix(self, channels):
        cmd = build_encoder_cmd(channels[:1], "out.mkv", 44100, "pcm_s24le", prefix=["ffmpeg"])
        assert cmd[:2] == ["ffmpeg", "-f"]
        assert "44100" in cmd
        assert cmd[-4:] == ["-c:a", "pcm_s24le", "-y", "out.mkv"]

    def test_disabled_slot_still_counts_towards_width(self):
        channel = make_channel("keys", "disabled", "synth:out_R")
        cmd = build_encoder_cmd([channel], "out.mkv", 48000, "flac")
        assert cmd[cmd.index("-channels") + 1] == "2"

    def test_input_port_names(self):
        assert encoder_input_port("guitar", 1) == "jamcapture_guitar:input_1"
        assert encoder_input_port("backing", 2) == "jamcapture_backing:input_2"


class TestStart:

    @patch(POPEN)
    def test_spawn_environment(self, mock_popen, channels):
        mock_popen.return_value = _mock_process()
        encoder = EncoderProcess()

        encoder.start(channels, "/rec/song.mkv", 48000, "flac")
        try:
            kwargs = mock_popen.call_args[1]
            assert kwargs["env"]["PIPEWIRE_QUANTUM"] == "256/48000"
            assert kwargs["env"]["PIPEWIRE_LATENCY"] == "256/48000"
            assert kwargs["stdin"] == subprocess.DEVNULL
            assert kwargs["stdout"] == subprocess.PIPE
            assert kwargs["stderr"] == subprocess.PIPE
            assert mock_popen.call_args[0][0][:2] == ["pw-jack", "ffmpeg"]
            assert encoder.pid == 1234
        finally:
            encoder.stop()

    @patch(POPEN, side_effect=FileNotFoundError("pw-jack"))
    def test_spawn_failure(self, mock_popen, channels):
        with pytest.raises(EncoderError, match="failed to start encoder"):
            EncoderProcess().start(channels, "/rec/song.mkv", 48000, "flac")

    @patch(POPEN)
    def test_double_start_rejected(self, mock_popen, channels):
        mock_popen.return_value = _mock_process()
        encoder = EncoderProcess()
        encoder.start(channels, "/rec/song.mkv", 48000, "flac")
        try:
            with pytest.raises(EncoderError, match="already started"):
                encoder.start(channels, "/rec/song.mkv", 48000, "flac")
            assert mock_popen.call_count == 1
        finally:
            encoder.stop()

    @patch(POPEN)
    def test_stderr_is_drained_into_buffer(self, mock_popen, channels):
        mock_popen.return_value = _mock_process(stderr=b"Input #0, jack\nsize=    1024kB\n")
        encoder = EncoderProcess()
        encoder.start(channels, "/rec/song.mkv", 48000, "flac")
        encoder.stop()

        assert "Input #0, jack" in encoder.stderr_text
        assert "size=" in encoder.stderr_text


class TestStop:

    def _started(self, mock_popen, channels, process):
        mock_popen.return_value = process
        encoder = EncoderProcess(stop_timeout=0.5)
        encoder.start(channels, "/rec/song.mkv", 48000, "flac")
        return encoder

    def test_never_started(self):
        assert EncoderProcess().stop() is StopOutcome.NOT_RUNNING

    @pytest.mark.parametrize("code", [0, 255, -signal.SIGINT, -signal.SIGTERM, -signal.SIGKILL])
    @patch(POPEN)
    def test_clean_exit_codes(self, mock_popen, code, channels):
        process = _mock_process(returncode=code)
        encoder = self._started(mock_popen, channels, process)

        assert encoder.stop() is StopOutcome.CLEAN
        process.send_signal.assert_called_once_with(signal.SIGINT)
        process.kill.assert_not_called()
        assert encoder.returncode == code

    @patch(POPEN)
    def test_abnormal_exit_is_reported_not_raised(self, mock_popen, channels):
        process = _mock_process(returncode=1)
        encoder = self._started(mock_popen, channels, process)

        assert encoder.stop() is StopOutcome.ABNORMAL_EXIT
        assert encoder.returncode == 1

    @patch(POPEN)
    def test_timeout_forces_kill(self, mock_popen, channels):
        process = _mock_process()
        process.wait.side_effect = [subprocess.TimeoutExpired(cmd="ffmpeg", timeout=0.5), -9]
        encoder = self._started(mock_popen, channels, process)

        assert encoder.stop() is StopOutcome.FORCED
        process.kill.assert_called_once()
        assert not encoder.is_running()

    @patch(POPEN)
    def test_signal_failure_falls_back_to_kill(self, mock_popen, channels):
        process = _mock_process(returncode=-9)
        process.send_signal.side_effect = OSError("Operation not permitted")
        encoder = self._started(mock_popen, channels, process)

        assert encoder.stop() is StopOutcome.CLEAN
        process.kill.assert_called_once()

    @patch(POPEN)
    def test_kill_failure_raises(self, mock_popen, channels):
        process = _mock_process()
        process.send_signal.side_effect = OSError("Operation not permitted")
        process.kill.side_effect = PermissionError("Operation not permitted")
        encoder = self._started(mock_popen, channels, process)

        with pytest.raises(EncoderError, match="failed to kill encoder"):
            encoder.stop()

    @patch(POPEN)
    def test_failed_stop_keeps_handle_for_kill(self, mock_popen, channels):
        process = _mock_process()
        process.send_signal.side_effect = OSError("Operation not permitted")
        process.kill.side_effect = PermissionError("Operation not permitted")
        encoder = self._started(mock_popen, channels, process)

        with pytest.raises(EncoderError):
            encoder.stop()
        assert encoder.pid == 1234

        process.kill.side_effect = None
        encoder.kill()

        assert process.kill.call_count == 2
        assert encoder.pid is None

    @patch(POPEN)
    def test_stop_twice(self, mock_popen, channels):
        encoder = self._started(mock_popen, channels, _mock_process())

        assert encoder.stop() is StopOutcome.CLEAN
        assert encoder.stop() is StopOutcome.NOT_RUNNING

    @patch(POPEN)
    def test_kill_for_teardown(self, mock_popen, channels):
        process = _mock_process()
        encoder = self._started(mock_popen, channels, process)

        encoder.kill()

        process.kill.assert_called_once()
        assert encoder.pid is None


class TestValidateOutputFile:

    def test_large_enough(self, tmp_path):
        path = tmp_path / "take.mkv"
        path.write_bytes(b"\x00" * 1024)
        assert validate_output_file(str(path)) == 1024

    def test_too_small(self, tmp_path):
        path = tmp_path / "take.mkv"
        path.write_bytes(b"\x00" * 1023)
        with pytest.raises(OutputValidationError, match="too small"):
            validate_output_file(str(path))

    def test_missing(self, tmp_path):
        with pytest.raises(OutputValidationError, match="not found"):
            validate_output_file(str(tmp_path / "missing.mkv"))


class TestDrain:

    def test_buffer_keeps_most_recent_text(self):
        buffer = OutputBuffer(max_chars=10)
        buffer.append("first")
        buffer.append("second")
        assert buffer.text().endswith("second\n")
        assert len(buffer.text()) == 10

    def test_tail(self):
        buffer = OutputBuffer()
        for i in range(30):
            buffer.append(f"line {i}")
        assert buffer.tail(2) == "line 28\nline 29"

    def test_drain_thread_reads_until_eof(self):
        stream = io.BytesIO(b"one\n\ntwo\n")
        thread = OutputDrainThread(stream, "stderr")
        thread.start()
        thread.join(timeout=2.0)

        assert not thread.is_alive()
        assert thread.lines_read == 2
        assert thread.buffer.text() == "one\ntwo\n"
        assert stream.closed
