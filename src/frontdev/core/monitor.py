"""Bundler output monitoring.

The bundler has no readiness API, so its combined stdout/stderr is the
protocol: each compilation ends with a line matching either the success or
the failure pattern. The monitor reads the stream on its own thread, keeps
the text of the current compilation, and on every boundary refreshes the
manifest snapshot, resolves the readiness gate and triggers a live reload.
"""

import codecs
import logging
import re
import threading
from typing import Any, Callable, FrozenSet, List, Optional, TextIO, Union

from .config import DEFAULT_FAILURE_PATTERN, DEFAULT_SUCCESS_PATTERN
from .gate import GateState, ReadinessGate

logger = logging.getLogger(__name__)

# Color/erase escape sequences and stray carriage returns or backspaces
_CLEAN_PATTERN = re.compile(r"(\x1b\[[;\d]*[A-Za-z]|[\b\r]+)")

_READ_SIZE = 8192

SUCCEED_MSG = "----------------- Frontend compiled successfully. -----------------"
FAILED_MSG = "------------------ Frontend compilation failed. ------------------"

PatternLike = Union[str, "re.Pattern[str]"]


def clean_line(line: str) -> str:
    """Strip terminal escape codes from a line of bundler output."""
    return _CLEAN_PATTERN.sub("", line)


def _compile(pattern: PatternLike) -> "re.Pattern[str]":
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern)


class OutputMonitor:
    """Parses bundler output lines and reacts to build results.

    Only the monitor thread writes the accumulator and the manifest
    snapshot. Other threads read ``failed_output`` and ``manifest``, which
    are always replaced whole.
    """

    def __init__(
        self,
        gate: ReadinessGate,
        *,
        success_pattern: PatternLike = DEFAULT_SUCCESS_PATTERN,
        failure_pattern: PatternLike = DEFAULT_FAILURE_PATTERN,
        manifest_fetcher: Optional[Callable[[], FrozenSet[str]]] = None,
        live_reload: Optional[Any] = None,
        console: Optional[TextIO] = None,
    ):
        self.gate = gate
        self.success_pattern = _compile(success_pattern)
        self.failure_pattern = _compile(failure_pattern)
        self.manifest_fetcher = manifest_fetcher
        self.live_reload = live_reload
        self.console = console

        self._lock = threading.Lock()
        self._partial: List[str] = []
        self._accumulated: List[str] = []
        self._failed_output: Optional[str] = None
        self._manifest: FrozenSet[str] = frozenset()
        self._compile_count = 0
        self._last_outcome = GateState.PENDING

        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self.read_failed = False

    @property
    def failed_output(self) -> Optional[str]:
        """Output of the last compilation if it failed, else None."""
        return self._failed_output

    @property
    def manifest(self) -> FrozenSet[str]:
        """Asset paths from the latest successfully fetched manifest."""
        return self._manifest

    @property
    def compile_count(self) -> int:
        return self._compile_count

    @property
    def last_outcome(self) -> GateState:
        return self._last_outcome

    def set_manifest(self, paths: FrozenSet[str]) -> None:
        self._manifest = frozenset(paths)

    def start(self, stream) -> threading.Thread:
        """Start reading a binary stream on a daemon thread."""
        self._thread = threading.Thread(
            target=self._read_loop, args=(stream,), name="frontdev-monitor", daemon=True
        )
        self._thread.start()
        return self._thread

    def request_stop(self) -> None:
        """Mark the coming stream closure as expected."""
        self._stopping.set()

    @property
    def is_reading(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _read_loop(self, stream) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        read = getattr(stream, "read1", None) or stream.read
        try:
            while True:
                chunk = read(_READ_SIZE)
                if not chunk:
                    break
                self.feed(decoder.decode(chunk))
            logger.debug("Bundler output stream closed")
        except (OSError, ValueError) as e:
            # ValueError is what a read on a closed pipe object raises
            if self._stopping.is_set():
                logger.debug("Exception when reading bundler output: %s", e)
            else:
                logger.error("Exception when reading bundler output: %s", e)
                self.read_failed = True
        finally:
            # The process went away; wake whoever waits for the first build.
            self.gate.resolve(False)

    def feed(self, text: str) -> None:
        """Process a chunk of output, handling every completed line."""
        if not text:
            return
        if self.console is not None:
            self.console.write(text)
            self.console.flush()

        start = 0
        while True:
            end = text.find("\n", start)
            if end < 0:
                if start < len(text):
                    self._partial.append(text[start:])
                return
            self._partial.append(text[start:end + 1])
            line = "".join(self._partial)
            self._partial = []
            self.process_line(line)
            start = end + 1

    def process_line(self, line: str) -> None:
        """Handle one line of output, newline included."""
        # Progress indicators redraw themselves with backspaces
        if "\b" in line:
            return

        succeeded = self.success_pattern.search(line) is not None
        failed = self.failure_pattern.search(line) is not None

        with self._lock:
            self._accumulated.append(clean_line(line))
            if not (succeeded or failed):
                return
            self._failed_output = "".join(self._accumulated) if failed else None
            self._accumulated = []
            self._compile_count += 1
            self._last_outcome = GateState.FAILED if failed else GateState.SUCCEEDED

        if failed:
            logger.warning(FAILED_MSG)
        else:
            logger.info(SUCCEED_MSG)

        self._refresh_manifest()
        self.gate.resolve(not failed)

        # Reload on failure too so the error shows up in the browser
        if self.live_reload is not None:
            self.live_reload.reload(failed)

    def _refresh_manifest(self) -> None:
        if self.manifest_fetcher is None:
            return
        try:
            self._manifest = frozenset(self.manifest_fetcher())
        except Exception as e:
            logger.error("Error when reading manifest.json from bundler: %s", e)
