"""Port allocation and persistence for the bundler.

The port of a running bundler is written to a port file so that a restarted
host process can find and reuse it instead of paying the bundler's cold
start again. Nothing locks the file: two launches racing on it simply end up
probing, and the one whose bundler answers wins.
"""

import logging
import socket
from pathlib import Path
from typing import Callable, Optional, Tuple

from .bundler import BUNDLER_HOST, BundlerClient
from .errors import ConnectivityError
from .paths import get_port_file

logger = logging.getLogger(__name__)

START_FAILURE = "Couldn't start dev server because"


def get_free_port() -> int:
    """Return a TCP port that is currently free on this machine."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", 0))
            return int(sock.getsockname()[1])
    except OSError as e:
        raise RuntimeError(f"Unable to find a free port for running the bundler: {e}") from e


class PortRegistry:
    """Resolves and remembers the bundler port of one project."""

    def __init__(
        self,
        project_dir: Path,
        *,
        token: Optional[str] = None,
        probe: Optional[Callable[[int], bool]] = None,
        host: str = BUNDLER_HOST,
    ):
        self.project_dir = Path(project_dir)
        self.port_file = get_port_file(self.project_dir, token)
        self._probe = probe or (lambda port: BundlerClient(port, host=host).is_reachable())

    def read(self) -> int:
        """Read the persisted port.

        Returns:
            The port, or 0 when nothing usable is stored.
        """
        try:
            text = self.port_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning("Unable to read port file %s: %s", self.port_file, e)
            return 0
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            logger.warning("Ignoring garbled port file %s: %r", self.port_file, text)
            return 0

    def write(self, port: int) -> None:
        """Persist the port for later launches."""
        self.port_file.write_text(str(int(port)), encoding="utf-8")

    def release(self) -> None:
        """Delete the persisted port. Safe to call repeatedly."""
        self.port_file.unlink(missing_ok=True)

    def find_running(self, explicit_port: int = 0) -> int:
        """Look for a bundler that is already running.

        Args:
            explicit_port: Port of a bundler the caller claims is running.

        Returns:
            The port of a bundler answering its manifest endpoint, or 0.

        Raises:
            ConnectivityError: If an explicit port was given and nothing
                answers on it.
        """
        if explicit_port > 0:
            if not self._probe(explicit_port):
                raise ConnectivityError(
                    f"{START_FAILURE} bundler port '{explicit_port}' is defined "
                    "but it's not working properly",
                    explicit_port,
                )
            self._reuse(explicit_port)
            return explicit_port

        port = self.read()
        if port > 0:
            if self._probe(port):
                self._reuse(port)
                return port
            logger.warning(
                "Bundler port '%d' is defined but it's not working properly. "
                "Using a new free port...",
                port,
            )
        return 0

    def allocate(self) -> int:
        """Pick a free port and persist it right away.

        The port is written before the bundler starts, so a crash during
        startup is recovered by the probe on the next launch.
        """
        port = get_free_port()
        self.write(port)
        return port

    def resolve(self, explicit_port: int = 0) -> Tuple[int, bool]:
        """Find the port the bundler should use.

        Returns:
            Tuple of (port, reused). ``reused`` is True when a running
            bundler answered and no new process must be spawned.

        Raises:
            ConnectivityError: See ``find_running``.
        """
        port = self.find_running(explicit_port)
        if port > 0:
            return port, True
        return self.allocate(), False

    def _reuse(self, port: int) -> None:
        logger.info("Reusing bundler running at %s:%d", BUNDLER_HOST, port)
        self.write(port)
