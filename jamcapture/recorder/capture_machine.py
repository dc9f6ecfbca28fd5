"""
Capture state machine.

CaptureStateMachine owns the single capture status, the session, the channel
status cache, the encoder handle and the source monitor. Callers drive it with
prepare(), cancel() and stop(); the READY -> RECORDING promotion only ever
happens from the source monitor once every configured source is available.

    STANDBY/ERROR --prepare--> READY --(monitor)--> RECORDING --stop--> STANDBY
    READY --cancel--> STANDBY
    READY/ERROR --(monitor: timeout, duplicates, recovery)--> STANDBY
    encoder start/stop or output failure --> ERROR

One re-entrant lock guards all of the above. It is held for check-and-mutate
sections only, never across sleeps, subprocess start/stop or thread joins.
Promotion releases the lock while the encoder starts but keeps a transition
token (_promoting) so no other mutating call can interleave.
"""

import functools
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from jamcapture.config import CaptureConfig, Channel
from jamcapture.encoder.encoder_process import (
    EncoderProcess,
    encoder_input_port,
    validate_output_file,
)
from jamcapture.errors import (
    CaptureError,
    DuplicateSourceError,
    EncoderError,
    InvalidStateError,
    PortConnectionError,
    RoutingError,
    ValidationError,
)
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
from jamcapture.routing.connection_manager import PortConnectionManager
from jamcapture.routing.port_directory import PortDirectory
from jamcapture.routing.pw_link import RoutingGraph
from jamcapture.routing.source import ActiveSource

logger = logging.getLogger(__name__)

OUTPUT_EXTENSION = ".mkv"
THREAD_JOIN_TIMEOUT_SEC = 10.0


def default_encoder_factory(config: CaptureConfig) -> EncoderProcess:
    return EncoderProcess(config.encoder_cmd, stop_timeout=config.stop_timeout_sec)


class CaptureStateMachine:
    """
    Recording state machine for one process.

    Args:
        config: Capture configuration (channels, output, timings)
        directory: Port directory over the routing graph (default: pw-link)
        connector: Port connection manager (default: built on ``directory``)
        encoder_factory: Builds a fresh encoder handle per recording
    """

    def __init__(
        self,
        config: CaptureConfig,
        directory: Optional[PortDirectory] = None,
        connector: Optional[PortConnectionManager] = None,
        encoder_factory: Optional[Callable[[CaptureConfig], EncoderProcess]] = None,
    ) -> None:
        self._config = config
        self._directory = directory if directory is not None else PortDirectory(RoutingGraph())
        self._connector = connector if connector is not None else PortConnectionManager(self._directory)
        self._encoder_factory = encoder_factory or default_encoder_factory

        self._lock = threading.RLock()
        self._status = CaptureStatus.STANDBY
        self._session: Optional[Session] = None
        self._encoder: Optional[EncoderProcess] = None
        self._cache = ChannelStatusCache()
        self._last_error: Optional[str] = None

        self._monitor: Optional[SourceMonitor] = None
        self._monitor_generation = 0

        self._promoting = False
        self._stopping = False

        self._connect_thread: Optional[threading.Thread] = None
        self._connect_stop: Optional[threading.Event] = None
        self._links: List[Tuple[str, str]] = []

    @property
    def config(self) -> CaptureConfig:
        return self._config

    @property
    def channels(self) -> Sequence[Channel]:
        return self._config.channels

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self) -> Tuple[CaptureStatus, Optional[Session]]:
        """Current status and a copy of the session (None when there is none)."""
        with self._lock:
            session = self._session.copy() if self._session is not None else None
            return self._status, session

    def get_channel_status(self) -> Dict[str, ChannelStatus]:
        """
        Per-channel source status.

        While recording this is the snapshot frozen at promotion; the routing
        graph is not queried. Otherwise the graph is scanned and the cache
        refreshed.
        """
        with self._lock:
            if self._cache.state is CacheState.FROZEN:
                return self._cache.get() or {}
        return dict(self._check_sources().statuses)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def prepare(self, song_name: str) -> Session:
        """
        Open a session for ``song_name`` and start watching the sources.

        Returns:
            Copy of the new session

        Raises:
            ValidationError: Empty or unusable song name
            InvalidStateError: Not in STANDBY or ERROR, or a recording is starting
            DuplicateSourceError: A configured source is duplicated (status ERROR,
                the monitor keeps watching for the conflict to clear)
            CaptureError: Output directory could not be created (status ERROR)
        """
        if not song_name or not song_name.strip():
            raise ValidationError("song name cannot be empty")
        clean_name = clean_file_name(song_name)
        if not any(c.isalnum() for c in clean_name):
            raise ValidationError(f"song name must contain a letter or digit: {song_name!r}")

        old_monitor = None
        try:
            with self._lock:
                if self._promoting:
                    raise InvalidStateError("recording is starting, cannot prepare")
                if self._status not in (CaptureStatus.STANDBY, CaptureStatus.ERROR):
                    raise InvalidStateError(f"cannot prepare while {self._status.value}")

                # Superseded monitor: callbacks become no-ops now, joined after unlock
                old_monitor = self._detach_monitor()
                if old_monitor is not None:
                    old_monitor.request_stop()
                self._prepare_locked(song_name, clean_name)
                return self._session.copy()
        finally:
            if old_monitor is not None:
                old_monitor.stop()

    def _prepare_locked(self, song_name: str, clean_name: str) -> None:
        output_dir = Path(self._config.output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._fail_locked(f"failed to create output directory {output_dir}: {e}")
            raise CaptureError(self._last_error) from e

        channels = self._config.channels
        try:
            ports = self._directory.list_ports()
        except RoutingError as e:
            logger.warning(f"Could not check for duplicate sources: {e}")
            ports = None

        if ports is not None:
            check = evaluate_channels(channels, self._directory, ports)
            self._cache.store(check.statuses)
            duplicate = self._first_duplicate(channels, ports)
            if duplicate is not None:
                port, matches = duplicate
                error = DuplicateSourceError(port, matches)
                self._session = None
                self._fail_locked(str(error))
                self._start_monitor_locked()
                raise error

        output_file = str(output_dir / f"{clean_name}{OUTPUT_EXTENSION}")
        self._session = Session(
            song_name=song_name,
            start_time=datetime.now(),
            output_file=output_file,
            channel_names=[channel.name for channel in channels],
        )
        self._status = CaptureStatus.READY
        self._last_error = None
        logger.info(f"Prepared '{song_name}' -> {output_file}, waiting for sources")
        self._start_monitor_locked()

    def _first_duplicate(self, channels: Sequence[Channel], ports: Sequence[str]):
        for channel in channels:
            for name in channel.active_sources:
                matches = self._directory.find_duplicates(name, ports)
                if len(matches) > 1:
                    return name, matches
        return None

    def cancel(self) -> None:
        """
        Abandon a READY session.

        Raises:
            InvalidStateError: Not READY, or the recording is already starting
        """
        with self._lock:
            if self._promoting:
                raise InvalidStateError("recording is starting, cannot cancel")
            if self._status is not CaptureStatus.READY:
                raise InvalidStateError(f"cannot cancel while {self._status.value}")
            monitor = self._detach_monitor()
            self._session = None
            self._status = CaptureStatus.STANDBY
            logger.info("Session cancelled")

        if monitor is not None:
            monitor.stop()

    def stop(self) -> str:
        """
        Stop the recording and validate the output file.

        Returns:
            Path of the recorded file

        Raises:
            InvalidStateError: Not RECORDING, or a stop is already running
            EncoderError: Encoder could not be stopped, or output is invalid
                (status ERROR)
        """
        with self._lock:
            if self._stopping:
                raise InvalidStateError("stop already in progress")
            if self._promoting or self._status is not CaptureStatus.RECORDING:
                raise InvalidStateError(f"cannot stop while {self._status.value}")
            self._stopping = True
            monitor = self._detach_monitor()
            encoder = self._encoder
            output_file = self._session.output_file
            connect_thread, connect_stop = self._connect_thread, self._connect_stop

        logger.info("Stopping recording")
        try:
            if monitor is not None:
                monitor.stop()
            if connect_stop is not None:
                connect_stop.set()
            outcome = encoder.stop(self._config.stop_timeout_sec)
            logger.info(f"Encoder stopped ({outcome.value})")
            self._join_connect_thread(connect_thread)
            size = validate_output_file(output_file)
        except Exception as e:
            if isinstance(e, CaptureError):
                error = e
                logger.error(f"Stop failed: {e}")
            else:
                error = EncoderError(f"failed to stop encoder: {e}")
                logger.error(f"Stop failed: {e}", exc_info=True)
            if connect_stop is not None:
                connect_stop.set()
            self._join_connect_thread(connect_thread)
            # A stuck encoder still holds its links
            self._release_links()
            encoder.kill()
            with self._lock:
                self._fail_locked(str(error))
                self._encoder = None
                self._retire_recording_locked()
            if error is e:
                raise
            raise error from e

        with self._lock:
            self._status = CaptureStatus.STANDBY
            self._session = None
            self._encoder = None
            self._links = []
            self._retire_recording_locked()
        logger.info(f"Recording saved: {output_file} ({size} bytes)")
        return output_file

    def cleanup(self) -> None:
        """Best-effort teardown at process exit: stop the monitor, kill the encoder."""
        with self._lock:
            monitor = self._detach_monitor()
        if monitor is not None:
            # Waits out an in-flight promotion, which runs on the monitor thread
            monitor.stop()

        with self._lock:
            encoder = self._encoder
            self._encoder = None
            connect_thread, connect_stop = self._connect_thread, self._connect_stop
            if connect_stop is not None:
                connect_stop.set()
            if self._status in (CaptureStatus.READY, CaptureStatus.RECORDING):
                self._status = CaptureStatus.STANDBY
                self._session = None
            self._retire_recording_locked()

        self._join_connect_thread(connect_thread)
        self._release_links()
        if encoder is not None:
            logger.info("Killing encoder during cleanup")
            encoder.kill()

    # ------------------------------------------------------------------
    # Monitor wiring
    # ------------------------------------------------------------------

    def _start_monitor_locked(self) -> None:
        self._monitor_generation += 1
        generation = self._monitor_generation
        monitor = SourceMonitor(
            get_status=self._current_status,
            check_sources=self._check_sources,
            on_duplicates=functools.partial(self._on_duplicates, generation),
            on_recovered=functools.partial(self._on_recovered, generation),
            on_ready=functools.partial(self._on_ready, generation),
            on_timeout=functools.partial(self._on_timeout, generation),
            poll_interval=self._config.poll_interval_sec,
            window=self._config.ready_timeout_sec,
            name=f"SourceMonitor-{generation}",
        )
        self._monitor = monitor
        monitor.start()

    def _detach_monitor(self) -> Optional[SourceMonitor]:
        """Invalidate the current monitor's callbacks and hand it back for stopping."""
        monitor = self._monitor
        self._monitor = None
        self._monitor_generation += 1
        return monitor

    def _is_current(self, generation: int) -> bool:
        return generation == self._monitor_generation

    def _current_status(self) -> CaptureStatus:
        with self._lock:
            return self._status

    def _check_sources(self) -> SourceCheck:
        check = check_sources(self._config.channels, self._directory)
        with self._lock:
            self._cache.store(check.statuses)
        return check

    def _on_duplicates(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation) or self._status is not CaptureStatus.READY:
                return
            self._session = None
            self._status = CaptureStatus.STANDBY
            self._monitor = None
            self._last_error = "duplicate sources detected, session abandoned"
            logger.warning("Session abandoned due to duplicate sources")

    def _on_recovered(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation) or self._status is not CaptureStatus.ERROR:
                return
            self._session = None
            self._status = CaptureStatus.STANDBY
            self._monitor = None
            logger.info("Duplicate sources resolved, back to standby")

    def _on_timeout(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            if self._status not in (CaptureStatus.READY, CaptureStatus.ERROR):
                return
            self._session = None
            self._status = CaptureStatus.STANDBY
            self._monitor = None
            self._last_error = f"sources not ready within {self._config.ready_timeout_sec:g}s"
            logger.warning("Session expired waiting for sources")

    def _on_ready(self, generation: int, check: SourceCheck) -> None:
        """Promote READY -> RECORDING. Runs on the monitor thread."""
        with self._lock:
            if not self._is_current(generation) or self._status is not CaptureStatus.READY:
                return
            if self._promoting:
                return
            self._promoting = True
            output_file = self._session.output_file

        channels = list(self._config.channels)
        encoder = None
        try:
            self._remove_stale_output(output_file)
            encoder = self._encoder_factory(self._config)
            encoder.start(channels, output_file, self._config.sample_rate, self._config.output_format)
        except Exception as e:
            if isinstance(e, CaptureError):
                message = str(e)
                logger.error(f"Failed to start encoder: {e}")
            else:
                message = f"failed to start encoder: {e}"
                logger.error(f"Failed to start encoder: {e}", exc_info=True)
            if encoder is not None:
                # Reap a half-started process
                encoder.kill()
            with self._lock:
                self._promoting = False
                self._monitor = None
                self._fail_locked(message)
            return

        with self._lock:
            self._promoting = False
            self._encoder = encoder
            self._session.recording_started = datetime.now()
            self._status = CaptureStatus.RECORDING
            self._cache.freeze(check.statuses)
            self._links = []
            self._connect_stop = threading.Event()
            self._connect_thread = threading.Thread(
                target=self._connect_channels,
                args=(channels, self._connect_stop),
                name="PortConnector",
                daemon=True,
            )
            self._connect_thread.start()
            logger.info(f"Recording started: {output_file} ({len(channels)} channels)")

    @staticmethod
    def _remove_stale_output(output_file: str) -> None:
        path = Path(output_file)
        try:
            path.unlink()
            logger.debug(f"Removed existing file: {output_file}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove existing file {output_file}: {e}")

    # ------------------------------------------------------------------
    # Port connection worker
    # ------------------------------------------------------------------

    def _connect_channels(self, channels: Sequence[Channel], stop_event: threading.Event) -> None:
        """Connect every enabled source to its encoder input. Failures are logged, not raised."""
        if stop_event.wait(self._config.connect_settle_sec):
            return

        for channel in channels:
            for index, source in enumerate(channel.sources[:channel.input_channels], start=1):
                if stop_event.is_set():
                    return
                if not isinstance(source, ActiveSource):
                    continue

                dest = encoder_input_port(channel.name, index)
                if not self._connector.wait_for_port(
                    dest, self._config.port_wait_timeout_sec, stop_event
                ):
                    if stop_event.is_set():
                        return
                    logger.warning(f"Encoder port {dest} did not appear, skipping {source.name}")
                    continue

                try:
                    self._connector.connect_with_retry(source.name, dest, stop_event)
                    with self._lock:
                        self._links.append((source.name, dest))
                    logger.info(f"Connected {source.name} -> {dest}")
                except PortConnectionError as e:
                    if stop_event.is_set():
                        return
                    logger.warning(f"Channel {channel.name}: {e}")

        logger.debug("Port connection pass complete")

    def _release_links(self) -> None:
        """Best-effort disconnect of every link the connection worker made."""
        with self._lock:
            links, self._links = self._links, []
        for source, dest in links:
            try:
                self._connector.disconnect(source, dest)
                logger.debug(f"Disconnected {source} -> {dest}")
            except RoutingError as e:
                logger.debug(f"Could not disconnect {source} -> {dest}: {e}")

    def _join_connect_thread(self, thread: Optional[threading.Thread]) -> None:
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=THREAD_JOIN_TIMEOUT_SEC)
        if thread.is_alive():
            logger.warning("Port connection thread did not terminate within timeout")

    # ------------------------------------------------------------------
    # Helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _fail_locked(self, message: str) -> None:
        self._status = CaptureStatus.ERROR
        self._last_error = message

    def _retire_recording_locked(self) -> None:
        self._cache.thaw()
        self._stopping = False
        self._connect_thread = None
        self._connect_stop = None
