"""
Contract tests for RoutingGraph (pw-link wrapper).

Covers: listing parse (headers, blanks, duplicates preserved), argument
construction for connect/disconnect, tool failure mapping to RoutingError.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from jamcapture.errors import RoutingError
from jamcapture.routing.pw_link import RoutingGraph, parse_port_listing


LISTING = """Output ports:
system:capture_1
system:capture_2

Chrome:output_FL
Chrome:output_FL
Input ports:
  jamcapture_guitar:input_1
"""


def _completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestParsePortListing:

    def test_skips_headers_and_blank_lines(self):
        ports = parse_port_listing(LISTING)
        assert "Output ports:" not in ports
        assert "Input ports:" not in ports
        assert "" not in ports

    def test_preserves_order_and_duplicates(self):
        assert parse_port_listing(LISTING) == [
            "system:capture_1",
            "system:capture_2",
            "Chrome:output_FL",
            "Chrome:output_FL",
            "jamcapture_guitar:input_1",
        ]

    def test_empty_output(self):
        assert parse_port_listing("") == []


class TestRoutingGraph:

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_list_ports_runs_pw_link_io(self, mock_run):
        mock_run.return_value = _completed(stdout="a:1\nb:2\n")

        ports = RoutingGraph().list_ports()

        assert ports == ["a:1", "b:2"]
        assert mock_run.call_args[0][0] == ["pw-link", "-io"]

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_connect_passes_source_then_dest(self, mock_run):
        mock_run.return_value = _completed()

        RoutingGraph().connect("dev:1", "jamcapture_guitar:input_1")

        assert mock_run.call_args[0][0] == ["pw-link", "dev:1", "jamcapture_guitar:input_1"]

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_disconnect_uses_d_flag(self, mock_run):
        mock_run.return_value = _completed()

        RoutingGraph().disconnect("dev:1", "jamcapture_guitar:input_1")

        assert mock_run.call_args[0][0] == ["pw-link", "-d", "dev:1", "jamcapture_guitar:input_1"]

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_nonzero_exit_carries_tool_output(self, mock_run):
        mock_run.return_value = _completed(returncode=1, stderr="failed to link ports: No such file\n")

        with pytest.raises(RoutingError) as exc_info:
            RoutingGraph().connect("dev:1", "nowhere:1")

        assert "failed to link ports: No such file" in str(exc_info.value)

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_stdout_used_when_stderr_empty(self, mock_run):
        mock_run.return_value = _completed(returncode=2, stdout="usage: pw-link ...")

        with pytest.raises(RoutingError, match="usage: pw-link"):
            RoutingGraph().list_ports()

    @patch("jamcapture.routing.pw_link.subprocess.run", side_effect=FileNotFoundError("pw-link"))
    def test_missing_binary(self, mock_run):
        with pytest.raises(RoutingError, match="not found"):
            RoutingGraph().list_ports()

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="pw-link", timeout=5.0)

        with pytest.raises(RoutingError, match="timed out"):
            RoutingGraph().list_ports()

    @patch("jamcapture.routing.pw_link.subprocess.run")
    def test_custom_binary(self, mock_run):
        mock_run.return_value = _completed()

        RoutingGraph(pw_link_bin="/usr/local/bin/pw-link").list_ports()

        assert mock_run.call_args[0][0][0] == "/usr/local/bin/pw-link"
