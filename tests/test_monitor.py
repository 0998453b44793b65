"""Tests for OutputMonitor."""

import io

import pytest

from frontdev.core.gate import GateState, ReadinessGate
from frontdev.core.monitor import OutputMonitor, clean_line


class FakeLiveReload:
    def __init__(self):
        self.count = 0
        self.outcomes = []

    def reload(self, failed=False):
        self.count += 1
        self.outcomes.append(failed)


@pytest.fixture
def gate():
    return ReadinessGate()


@pytest.fixture
def live_reload():
    return FakeLiveReload()


@pytest.fixture
def monitor(gate, live_reload):
    return OutputMonitor(gate, live_reload=live_reload)


class TestCleanLine:
    def test_strips_color_codes(self):
        assert clean_line("\x1b[1m\x1b[31mERROR\x1b[39m\x1b[22m in a.js\n") == "ERROR in a.js\n"

    def test_strips_carriage_returns(self):
        assert clean_line("done\r\n") == "done\n"


class TestBuildResults:
    def test_successful_compilation(self, monitor, gate, live_reload):
        monitor.feed("98% emitting\n: Compiled.\n")
        assert gate.state is GateState.SUCCEEDED
        assert monitor.failed_output is None
        assert monitor.compile_count == 1
        assert monitor.last_outcome is GateState.SUCCEEDED
        assert live_reload.outcomes == [False]

    def test_failed_compilation_keeps_output(self, monitor, gate, live_reload):
        monitor.feed("ERROR in a.js\n...: Failed to compile.\n")
        assert gate.state is GateState.FAILED
        assert monitor.failed_output == "ERROR in a.js\n...: Failed to compile.\n"
        assert live_reload.outcomes == [True]

    def test_success_clears_previous_failure(self, monitor, gate):
        monitor.feed("ERROR in a.js\n: Failed to compile.\n")
        monitor.feed("fixed\n: Compiled.\n")
        assert monitor.failed_output is None
        assert monitor.compile_count == 2
        assert monitor.last_outcome is GateState.SUCCEEDED
        # The gate only records the first build
        assert gate.state is GateState.FAILED

    def test_failure_output_covers_current_cycle_only(self, monitor):
        monitor.feed("first\n: Compiled.\n")
        monitor.feed("second error\n: Failed to compile.\n")
        assert monitor.failed_output == "second error\n: Failed to compile.\n"

    def test_failure_output_is_cleaned(self, monitor):
        monitor.feed("\x1b[31mERROR\x1b[0m in b.js\r\n: Failed to compile.\n")
        assert monitor.failed_output == "ERROR in b.js\n: Failed to compile.\n"

    def test_lines_without_result_accumulate(self, monitor, gate):
        monitor.feed("building\n10% modules\n")
        assert gate.state is GateState.PENDING
        assert monitor.failed_output is None
        monitor.feed("ERROR in c.js\n: Failed to compile.\n")
        assert monitor.failed_output == "building\n10% modules\nERROR in c.js\n: Failed to compile.\n"

    def test_backspace_lines_are_ignored(self, monitor, gate, live_reload):
        monitor.feed("\b\b\b 50% : Compiled.\n")
        assert gate.state is GateState.PENDING
        assert monitor.compile_count == 0
        assert live_reload.count == 0
        monitor.feed(": Failed to compile.\n")
        assert monitor.failed_output == ": Failed to compile.\n"

    def test_line_split_across_chunks(self, monitor, gate):
        monitor.feed("hash: 1234 : Comp")
        assert gate.state is GateState.PENDING
        monitor.feed("iled.\n")
        assert gate.state is GateState.SUCCEEDED

    def test_custom_patterns(self, gate):
        monitor = OutputMonitor(gate, success_pattern=r"ready in \d+ms", failure_pattern="BUILD FAILED")
        monitor.feed("vite ready in 120ms\n")
        assert gate.state is GateState.SUCCEEDED


class TestManifestRefresh:
    def test_manifest_refreshed_at_boundary(self, gate):
        monitor = OutputMonitor(gate, manifest_fetcher=lambda: {"/VAADIN/build/a.js"})
        assert monitor.manifest == frozenset()
        monitor.feed(": Compiled.\n")
        assert monitor.manifest == frozenset({"/VAADIN/build/a.js"})

    def test_failed_fetch_keeps_previous_snapshot(self, gate):
        calls = []

        def fetcher():
            calls.append(1)
            if len(calls) > 1:
                raise OSError("connection refused")
            return {"/a.js"}

        monitor = OutputMonitor(gate, manifest_fetcher=fetcher)
        monitor.feed(": Compiled.\n")
        monitor.feed(": Compiled.\n")
        assert len(calls) == 2
        assert monitor.manifest == frozenset({"/a.js"})
        assert monitor.compile_count == 2


class TestReadLoop:
    def test_reads_stream_and_echoes(self, gate):
        console = io.StringIO()
        monitor = OutputMonitor(gate, console=console)
        monitor.start(io.BytesIO(b"line one\nhash: 1 : Compiled.\n"))
        monitor.join(timeout=5.0)
        assert not monitor.is_reading
        assert gate.state is GateState.SUCCEEDED
        assert console.getvalue() == "line one\nhash: 1 : Compiled.\n"

    def test_end_of_stream_resolves_gate_as_failed(self, gate):
        monitor = OutputMonitor(gate)
        monitor.start(io.BytesIO(b"Error: Cannot find module 'webpack'\n"))
        assert gate.wait(timeout=5.0)
        assert gate.state is GateState.FAILED
        assert monitor.compile_count == 0

    def test_closed_stream_after_stop_is_quiet(self, gate):
        stream = io.BytesIO(b"")
        stream.close()
        monitor = OutputMonitor(gate)
        monitor.request_stop()
        monitor.start(stream)
        monitor.join(timeout=5.0)
        assert monitor.read_failed is False
        assert gate.state is GateState.FAILED

    def test_closed_stream_without_stop_is_an_error(self, gate):
        stream = io.BytesIO(b"")
        stream.close()
        monitor = OutputMonitor(gate)
        monitor.start(stream)
        monitor.join(timeout=5.0)
        assert monitor.read_failed is True

    def test_utf8_split_across_reads(self, gate):
        console = io.StringIO()
        monitor = OutputMonitor(gate, console=console)
        data = "café : Compiled.\n".encode("utf-8")
        # A reader handing out one byte at a time splits the two-byte char
        class OneByteReader:
            def __init__(self, payload):
                self.payload = payload

            def read(self, size):
                chunk, self.payload = self.payload[:1], self.payload[1:]
                return chunk

        monitor.start(OneByteReader(data))
        monitor.join(timeout=5.0)
        assert console.getvalue() == "café : Compiled.\n"
        assert gate.state is GateState.SUCCEEDED
