"""Supervisor for the external bundler process.

Starts the bundler (or attaches to one that is already running), waits for
its first build and stops it again. One supervisor owns at most one process.
"""

import atexit
import copy
import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from datetime import datetime
from http.client import HTTPException
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from .bundler import BUNDLER_HOST, BundlerClient
from .config import DevServerConfig
from .errors import DevServerError, ProcessExitedError, StartupValidationError
from .gate import ReadinessGate
from .monitor import OutputMonitor
from .ports import START_FAILURE, PortRegistry
from .watchdog import DevServerWatchDog

logger = logging.getLogger(__name__)

LOG_START = (
    "Running the bundler to compile frontend resources. "
    "This may take a moment, please stand by..."
)


def command_to_string(cwd: Path, command: List[str]) -> str:
    return f"\n{cwd} >\n    {shlex.join(command)}\n"


class DevServerSupervisor:
    """Start/stop the bundler for one frontend project.

    ``start`` blocks until the bundler reported its first build or the
    configured timeout elapsed. The timeout is advisory: startup continues
    as long as the process is alive. A process that dies during startup
    leaves the supervisor permanently failed.
    """

    def __init__(
        self,
        config: DevServerConfig,
        *,
        live_reload: Optional[Any] = None,
        console: Optional[TextIO] = None,
        port_registry: Optional[PortRegistry] = None,
    ):
        self.config = config
        self.live_reload = live_reload
        self.console = console
        self.ports = port_registry or PortRegistry(config.project_dir)
        self.gate = ReadinessGate()
        self.monitor = OutputMonitor(
            self.gate,
            success_pattern=config.success_pattern,
            failure_pattern=config.failure_pattern,
            manifest_fetcher=self._fetch_manifest,
            live_reload=live_reload,
            console=console,
        )
        self.port: int = config.port

        self._start_lock = threading.Lock()
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._watchdog: Optional[DevServerWatchDog] = None
        self._started = False
        self._ready = False
        self._stopped = False
        self._failed_to_start = False
        self._reused = False
        self._exit_hook_registered = False
        self._run_info: Dict = {
            "running": False,
            "pid": None,
            "port": None,
            "reused": False,
            "started_at": None,
            "ready_at": None,
            "first_build": None,
            "first_build_at": None,
            "stopped_at": None,
            "returncode": None,
            "command": None,
            "last_error": None,
        }
        self.gate.add_done_callback(self._record_first_build)

    @property
    def client(self) -> BundlerClient:
        return BundlerClient(self.port, timeout=self.config.connect_timeout)

    @property
    def is_ready(self) -> bool:
        """True once startup finished and the bundler can take requests."""
        if self.monitor.read_failed:
            return False
        with self._lock:
            return self._ready and not self._failed_to_start and not self._stopped

    @property
    def failed_to_start(self) -> bool:
        """True once startup failed or the bundler output broke off unexpectedly."""
        if self.monitor.read_failed:
            return True
        with self._lock:
            return self._failed_to_start

    @property
    def is_running(self) -> bool:
        with self._lock:
            if self._stopped:
                return False
            if self._reused:
                return True
            return self._proc is not None and self._proc.poll() is None

    @property
    def failed_output(self) -> Optional[str]:
        return self.monitor.failed_output

    @property
    def manifest(self):
        return self.monitor.manifest

    def get_status(self) -> Dict:
        with self._lock:
            proc = self._proc
            if proc is not None and proc.poll() is not None and self._run_info["returncode"] is None:
                self._run_info["returncode"] = proc.returncode
            self._run_info["running"] = not self._stopped and (
                self._reused or (proc is not None and proc.poll() is None)
            )
            info = copy.deepcopy(self._run_info)
            failed = self._failed_to_start or self.monitor.read_failed
            info["ready"] = self._ready and not failed and not self._stopped
            info["failed_to_start"] = failed
        info["gate"] = self.gate.state.value
        info["compile_count"] = self.monitor.compile_count
        info["failed_output"] = self.monitor.failed_output
        return info

    def start(self) -> "DevServerSupervisor":
        """Start the bundler, or attach to one already running.

        Returns self. Calling it again after a first call returns right away
        without touching the running process.

        Raises:
            ConnectivityError: An explicitly configured port does not answer.
            StartupValidationError: Bundler files are missing.
            ProcessExitedError: The bundler exited during startup.
        """
        with self._start_lock:
            with self._lock:
                if self._started:
                    return self
                self._started = True
                self._run_info["started_at"] = datetime.now().isoformat()

            try:
                self._do_start()
            except Exception as e:
                with self._lock:
                    self._failed_to_start = True
                    self._run_info["last_error"] = str(e)
                raise
            return self

    def _do_start(self) -> None:
        start = time.monotonic()

        # A defined port means the bundler is supposed to be running already
        port, reused = self.ports.resolve(self.config.port)
        if reused:
            self._attach(port)
            return

        self.port = port
        success = False
        try:
            runtime = self.validate_files()
            logger.info("Starting dev server")
            self._watchdog = DevServerWatchDog()
            self._spawn(runtime)
            self._wait_for_first_build(start)
            success = True
        finally:
            if not success:
                self.ports.release()
                if self._watchdog is not None:
                    self._watchdog.stop()

    def _attach(self, port: int) -> None:
        self.port = port
        # The running bundler still owns the watchdog of its own launch
        self._watchdog = None
        try:
            self.monitor.set_manifest(self.client.fetch_manifest())
        except (OSError, HTTPException) as e:
            logger.error("Error when reading manifest.json from bundler: %s", e)
        self.gate.resolve(True)
        with self._lock:
            self._reused = True
            self._ready = True
            self._run_info.update(
                port=port,
                reused=True,
                ready_at=datetime.now().isoformat(),
            )

    def validate_files(self) -> str:
        """Check everything needed to launch the bundler is in place.

        Returns:
            Path of the runtime executable.

        Raises:
            StartupValidationError: On the first missing prerequisite.
        """
        project_dir = self.config.project_dir
        script = self.config.script_path
        bundler_config = self.config.config_path

        if not project_dir.is_dir():
            logger.warning("No project folder '%s' exists", project_dir)
            raise StartupValidationError(
                f"{START_FAILURE} the target execution folder doesn't exist."
            )
        if not script.exists():
            logger.warning("'%s' doesn't exist. Did you run `npm install`?", script)
            raise StartupValidationError(
                f"{START_FAILURE} '{script}' doesn't exist. `npm install` has not run or failed."
            )
        if not os.access(script, os.X_OK):
            logger.warning("'%s' is not an executable. Did you run `npm install`?", script)
            raise StartupValidationError(
                f"{START_FAILURE} '{script}' is not an executable. `npm install` has not run or failed."
            )
        if not bundler_config.is_file() or not os.access(bundler_config, os.R_OK):
            logger.warning("Bundler configuration '%s' is not found or is not readable.", bundler_config)
            raise StartupValidationError(
                f"{START_FAILURE} '{bundler_config}' doesn't exist or is not readable."
            )
        runtime = self.config.resolve_runtime()
        if runtime is None:
            raise StartupValidationError(
                f"{START_FAILURE} the runtime '{self.config.runtime_executable or 'node'}' "
                "could not be found."
            )
        return runtime

    def build_command(self, runtime: str) -> List[str]:
        """Build the bundler command line."""
        watchdog_port = self._watchdog.port if self._watchdog is not None else 0
        cmd = [
            runtime,
            str(self.config.script_path.absolute()),
            "--config",
            str(self.config.config_path.absolute()),
            "--port",
            str(self.port),
            "--env",
            f"watchDogPort={watchdog_port}",
        ]
        cmd += self.config.option_list()
        return cmd

    def _spawn(self, runtime: str) -> None:
        cmd = self.build_command(runtime)
        logger.debug(command_to_string(self.config.project_dir, cmd))

        # Held until _proc is set so a concurrent stop() either prevents the
        # spawn or sees the process and terminates it
        with self._lock:
            if self._stopped:
                raise DevServerError("Dev server was stopped during startup")
            try:
                # stderr is merged so one reader sees the whole protocol
                proc = subprocess.Popen(
                    cmd,
                    cwd=str(self.config.project_dir),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                logger.error("Failed to start the bundler process: %s", e)
                raise DevServerError(f"Failed to start the bundler process: {e}") from e
            self._proc = proc
            self._run_info.update(pid=proc.pid, port=self.port, command=cmd)

        if self.config.register_exit_hook:
            atexit.register(self.stop)
            self._exit_hook_registered = True

        self.monitor.start(proc.stdout)

    def _record_first_build(self, gate: ReadinessGate) -> None:
        with self._lock:
            self._run_info["first_build"] = "succeeded" if gate.succeeded else "failed"
            self._run_info["first_build_at"] = datetime.now().isoformat()

    def _wait_for_first_build(self, start: float) -> None:
        proc = self._proc
        logger.info(LOG_START)
        timeout_sec = self.config.timeout_ms / 1000.0
        if not self.gate.wait(timeout=timeout_sec):
            logger.warning(
                "No build result from the bundler after %d ms, continuing startup",
                self.config.timeout_ms,
            )
        elif self.monitor.compile_count == 0:
            # Output ended without a build result; let the exit be reaped
            try:
                proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                pass

        if proc.poll() is not None:
            with self._lock:
                self._run_info["returncode"] = proc.returncode
            raise ProcessExitedError("Bundler exited prematurely", proc.returncode)

        with self._lock:
            self._ready = True
            self._run_info["ready_at"] = datetime.now().isoformat()
        logger.info("Started dev server. Time: %dms", (time.monotonic() - start) * 1000)

    def stop(self, *, timeout_sec: float = 5.0) -> Dict:
        """Stop the bundler and forget its port. Safe to call repeatedly."""
        with self._lock:
            already_stopped = self._stopped
            self._stopped = True
            self._ready = False
            self._run_info["stopped_at"] = datetime.now().isoformat()
            proc = self._proc
            watchdog = self._watchdog
            started = self._started

        if already_stopped:
            return self.get_status()

        if self._exit_hook_registered:
            atexit.unregister(self.stop)
            self._exit_hook_registered = False

        if not started:
            return self.get_status()

        self.monitor.request_stop()
        if self.config.reuse_dev_server:
            logger.info("Leaving bundler running at %s:%d for reuse", BUNDLER_HOST, self.port)
            return self.get_status()

        # The most reliable way to stop the bundler is asking it to exit
        if self.port > 0:
            self.client.request_stop()

        if watchdog is not None:
            watchdog.stop()

        if proc is not None and proc.poll() is None:
            self._terminate(proc, timeout_sec)

        self.ports.release()
        self.monitor.join(timeout=timeout_sec)
        if proc is not None and proc.stdout is not None and not self.monitor.is_reading:
            proc.stdout.close()
        return self.get_status()

    def _terminate(self, proc: subprocess.Popen, timeout_sec: float) -> None:
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except (OSError, AttributeError):
            try:
                proc.terminate()
            except OSError:
                pass
        try:
            proc.wait(timeout=timeout_sec)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (OSError, AttributeError):
                proc.kill()
            proc.wait()

    def _fetch_manifest(self):
        return self.client.fetch_manifest()
