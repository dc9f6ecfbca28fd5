"""
Shared pytest fixtures for contract tests.
"""
import threading

import pytest

from jamcapture.recorder.capture_machine import CaptureStateMachine
from jamcapture.routing.connection_manager import PortConnectionManager, RetryPolicy
from jamcapture.routing.port_directory import PortDirectory

from jamcapture.tests.contracts.test_doubles import (
    FakeEncoderFactory,
    FakeRoutingGraph,
    make_channel,
    make_config,
    wait_for,
)


FAST_POLICY = RetryPolicy(attempts=3, delay_sec=0.01)


@pytest.fixture
def graph():
    """Routing graph with one hardware capture port."""
    return FakeRoutingGraph(["dev:1"])


@pytest.fixture
def directory(graph):
    return PortDirectory(graph)


@pytest.fixture
def connector(directory):
    return PortConnectionManager(directory, ephemeral_policy=FAST_POLICY, stable_policy=FAST_POLICY)


@pytest.fixture
def encoder_factory(graph):
    return FakeEncoderFactory(graph=graph)


@pytest.fixture
def guitar_config(tmp_path):
    """One mono channel "guitar" fed by dev:1."""
    return make_config(tmp_path, [make_channel("guitar", "dev:1")])


@pytest.fixture
def machine(guitar_config, directory, connector, encoder_factory):
    """CaptureStateMachine over the fake graph; torn down after the test."""
    machine = CaptureStateMachine(
        guitar_config,
        directory=directory,
        connector=connector,
        encoder_factory=encoder_factory,
    )
    yield machine
    machine.cleanup()


@pytest.fixture(autouse=False)  # Set to True to enable automatic thread leak detection
def thread_leak_guard():
    """
    Optional fixture to detect thread leaks between tests.

    Request it explicitly in tests that start monitors or connection threads.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    # Give exiting threads a moment to finish
    wait_for(lambda: not (set(t.ident for t in threading.enumerate()) - before), timeout=2.0)
    after = set(t.ident for t in threading.enumerate())
    leaked = after - before
    if leaked:
        leaked_threads = [t for t in threading.enumerate() if t.ident in leaked]
        thread_info = '\n'.join(f"  - {t.name} (daemon={t.daemon})" for t in leaked_threads)
        assert False, f"Thread leak detected - shutdown incomplete.\nLeaked threads:\n{thread_info}"
