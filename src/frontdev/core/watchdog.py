"""Watchdog socket that lets the bundler notice its parent is gone.

The bundler gets the watchdog port on its command line, connects to it and
exits as soon as the connection drops. The connection drops when this
process dies, even if it never got to run its shutdown code.
"""

import logging
import socket
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)


class DevServerWatchDog:
    """Listening socket kept open for the lifetime of the bundler."""

    def __init__(self, host: str = "127.0.0.1"):
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind((host, 0))
        self._server.listen(5)
        self.port: int = self._server.getsockname()[1]

        self._lock = threading.Lock()
        self._clients: List[socket.socket] = []
        self._stopped = False
        self._thread: Optional[threading.Thread] = threading.Thread(
            target=self._accept_loop, name="frontdev-watchdog", daemon=True
        )
        self._thread.start()
        logger.debug("Watchdog listening on port %d", self.port)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _accept_loop(self) -> None:
        while not self._stopped:
            try:
                client, address = self._server.accept()
            except OSError:
                break
            with self._lock:
                if self._stopped:
                    client.close()
                    break
                self._clients.append(client)
            logger.debug("Bundler connected to watchdog from %s", address)
            threading.Thread(
                target=self._drain, args=(client,), name="frontdev-watchdog-client", daemon=True
            ).start()

    def _drain(self, client: socket.socket) -> None:
        # Nothing meaningful is sent; read until the bundler hangs up.
        try:
            while client.recv(1024):
                pass
        except OSError:
            pass
        finally:
            with self._lock:
                if client in self._clients:
                    self._clients.remove(client)
            client.close()

    def stop(self) -> None:
        """Close the listening socket and every bundler connection."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            clients, self._clients = self._clients, []

        try:
            # Unblocks accept() on platforms where close() alone does not
            self._server.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._server.close()
        for client in clients:
            try:
                client.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client.close()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.debug("Watchdog on port %d stopped", self.port)
