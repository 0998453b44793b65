"""Process-scoped owner of the dev server.

The host application creates one ``DevServerContext`` and hands it to
whatever serves requests. The context starts the supervisor on a background
thread, so requests arriving during startup can be answered with a
placeholder, and stops it when the host shuts down.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Optional, TextIO

from .config import DevServerConfig
from .supervisor import DevServerSupervisor

logger = logging.getLogger(__name__)


class DevServerContext:
    """Holds the single supervisor of this process."""

    def __init__(self, *, live_reload: Optional[Any] = None, console: Optional[TextIO] = None):
        self.live_reload = live_reload
        self.console = console
        self._lock = threading.Lock()
        self._handler: Optional[DevServerSupervisor] = None
        self._startup: Optional[Future] = None
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "DevServerContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def handler(self) -> Optional[DevServerSupervisor]:
        """The supervisor, or None if the dev server was never started."""
        with self._lock:
            return self._handler

    @property
    def startup(self) -> Optional[Future]:
        with self._lock:
            return self._startup

    def is_started(self) -> bool:
        with self._lock:
            return self._handler is not None

    def start(self, config: DevServerConfig) -> DevServerSupervisor:
        """Start the dev server unless one was started already.

        Startup runs on a background thread; use ``wait`` or the ``startup``
        future to learn how it went.

        Returns:
            The supervisor of this process. An existing one is returned
            unchanged, whatever ``config`` says.
        """
        with self._lock:
            if self._handler is not None:
                return self._handler
            handler = DevServerSupervisor(
                config, live_reload=self.live_reload, console=self.console
            )
            self._handler = handler
            self._startup = Future()
            self._startup.set_running_or_notify_cancel()
            self._thread = threading.Thread(
                target=self._run_startup,
                args=(handler, self._startup),
                name="frontdev-startup",
                daemon=True,
            )
            self._thread.start()
            return handler

    def _run_startup(self, handler: DevServerSupervisor, future: Future) -> None:
        try:
            handler.start()
        except Exception as e:
            logger.error("Dev server failed to start: %s", e)
            future.set_exception(e)
        else:
            future.set_result(handler)

    def wait(self, timeout: Optional[float] = None) -> DevServerSupervisor:
        """Block until startup finished.

        Raises:
            RuntimeError: If the dev server was never started.
            concurrent.futures.TimeoutError: If startup is still running.
            DevServerError: Whatever made startup fail.
        """
        future = self.startup
        if future is None:
            raise RuntimeError("Dev server has not been started")
        return future.result(timeout=timeout)

    def stop(self) -> None:
        """Stop the dev server and forget it. Safe to call repeatedly."""
        with self._lock:
            handler, self._handler = self._handler, None
            thread, self._thread = self._thread, None
            self._startup = None
        if handler is None:
            return
        handler.stop()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
