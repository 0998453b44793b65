"""Front HTTP server for development.

Serves browser requests: asset requests go through the proxy gateway to the
bundler, everything the bundler does not know falls back to static files,
and a small JSON API plus an SSE stream expose dev server state and live
reload events.
"""

import json
import logging
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from queue import Empty
from typing import Dict, Optional
from urllib.parse import urlparse

from ..core.context import DevServerContext
from ..core.errors import ForwardingError
from .livereload import LiveReload
from .proxy import ProxyGateway, ProxyRequest

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SEC = 15.0
_MAX_LINE = 65537

_HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

# Written by send_response itself
_SET_BY_SERVER = {"date", "server"}


class _HandlerSink:
    """Writes proxied responses through a request handler."""

    def __init__(self, handler: SimpleHTTPRequestHandler):
        self.handler = handler
        self.started = False

    def send_status(self, status: int, headers) -> None:
        h = self.handler
        self.started = True
        if status >= 400 and not headers:
            h.send_error(status)
            return

        h.send_response(status)
        has_length = False
        for name, value in headers:
            key = name.lower()
            if key in _HOP_BY_HOP or key in _SET_BY_SERVER:
                continue
            if key == "content-length":
                if 300 <= status < 400:
                    continue
                has_length = True
            h.send_header(name, value)
        if 300 <= status < 400:
            h.send_header("Content-Length", "0")
        elif not has_length:
            # Body length unknown: the end of the connection ends the body
            h.send_header("Connection", "close")
            h.close_connection = True
        h.end_headers()

    def write(self, chunk: bytes) -> None:
        self.handler.wfile.write(chunk)


class DevServerRequestHandler(SimpleHTTPRequestHandler):
    """HTTP handler for the front server"""

    protocol_version = "HTTP/1.1"

    def __init__(
        self,
        *args,
        context: DevServerContext,
        gateway: ProxyGateway,
        live_reload: Optional[LiveReload] = None,
        static_dir: Optional[Path] = None,
        **kwargs,
    ):
        self.context = context
        self.gateway = gateway
        self.live_reload = live_reload
        self.static_dir = static_dir
        super().__init__(*args, directory=str(static_dir) if static_dir else None, **kwargs)

    def handle(self):
        """Handle request with graceful connection error handling."""
        try:
            super().handle()
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError):
            # Client disconnected before/during request - this is normal
            pass

    def do_GET(self):
        path = urlparse(self.path).path

        if path == "/api/dev-server":
            self._send_json({"dev_server": self._get_status()})
        elif path == "/api/dev-server/output":
            handler = self.context.handler
            self._send_json({"failed_output": handler.failed_output if handler else None})
        elif path == "/api/livereload":
            self._handle_livereload()
        elif not self._proxy():
            self._serve_static()

    def do_HEAD(self):
        if not self._proxy():
            self._serve_static()

    def do_POST(self):
        if not self._proxy():
            self.send_error(404, "Not Found")

    do_PUT = do_POST
    do_DELETE = do_POST
    do_PATCH = do_POST

    def _get_status(self) -> Dict:
        handler = self.context.handler
        if handler is None:
            return {"started": False}
        status = handler.get_status()
        status["started"] = True
        return status

    def _read_body(self) -> Optional[bytes]:
        """Read the request body, decoding chunked transfer encoding.

        Raises:
            ValueError: On a malformed chunk size line.
        """
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            return self._read_chunked_body()
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        if length <= 0:
            return None
        return self.rfile.read(length)

    def _read_chunked_body(self) -> bytes:
        chunks = []
        while True:
            size_line = self.rfile.readline(_MAX_LINE)
            size = int(size_line.split(b";", 1)[0].strip(), 16)
            if size == 0:
                break
            chunks.append(self.rfile.read(size))
            self.rfile.readline(_MAX_LINE)
        # Skip trailers up to the blank line
        while self.rfile.readline(_MAX_LINE) not in (b"\r\n", b"\n", b""):
            pass
        return b"".join(chunks)

    def _proxy(self) -> bool:
        """Send the request to the bundler if it is one of its assets.

        Returns:
            True if a response was written.
        """
        if not self.gateway.is_dev_request(self.path):
            return False

        try:
            body = self._read_body()
        except ValueError:
            self.send_error(400, "Malformed chunked request body")
            self.close_connection = True
            return True

        # The body goes out whole with its own length
        headers = [
            (name, value)
            for name, value in self.headers.items()
            if name.lower() not in ("transfer-encoding", "content-length")
        ]
        if body is not None:
            headers.append(("Content-Length", str(len(body))))
        request = ProxyRequest(
            method=self.command,
            path=self.path,
            headers=headers,
            body=body,
        )
        sink = _HandlerSink(self)
        try:
            result = self.gateway.handle(request, sink)
        except ForwardingError as e:
            logger.error("%s", e)
            if sink.started:
                self.close_connection = True
            else:
                self.send_error(502, "Bad Gateway")
            return True
        return result.handled

    def _serve_static(self):
        if self.static_dir is None:
            self.send_error(404, "Not Found")
        elif self.command == "HEAD":
            super().do_HEAD()
        else:
            super().do_GET()

    def _send_json(self, data: Dict, status: int = 200):
        """Send JSON response"""
        body = json.dumps(data).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        self.end_headers()
        self.wfile.write(body)

    def _handle_livereload(self):
        """Stream reload events to the browser as Server-Sent Events"""
        if self.live_reload is None:
            self.send_error(404, "Not Found")
            return

        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        self.send_header("Connection", "close")
        self.send_header("X-Accel-Buffering", "no")  # Disable nginx buffering
        self.end_headers()
        self.close_connection = True

        queue = self.live_reload.subscribe()
        try:
            self.wfile.write(b": connected\n\n")
            self.wfile.flush()
            while True:
                try:
                    event = queue.get(timeout=SSE_KEEPALIVE_SEC)
                except Empty:
                    self.wfile.write(b": keep-alive\n\n")
                    self.wfile.flush()
                    continue
                self._sse_send("reload", event)
        except (ConnectionAbortedError, BrokenPipeError, ConnectionResetError):
            pass
        finally:
            self.live_reload.unsubscribe(queue)

    def _sse_send(self, event: str, data):
        """Send SSE event with proper formatting and flush"""
        msg = f"event: {event}\ndata: {json.dumps(data)}\n\n"
        self.wfile.write(msg.encode())
        self.wfile.flush()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def create_server(
    context: DevServerContext,
    *,
    host: str = "127.0.0.1",
    port: int = 8080,
    live_reload: Optional[LiveReload] = None,
    static_dir: Optional[Path] = None,
    gateway: Optional[ProxyGateway] = None,
) -> ThreadingHTTPServer:
    """Build the front server around a dev server context."""
    if gateway is None:
        gateway = ProxyGateway(lambda: context.handler)

    def handler(*args_handler, **kwargs_handler):
        return DevServerRequestHandler(
            *args_handler,
            context=context,
            gateway=gateway,
            live_reload=live_reload,
            static_dir=static_dir,
            **kwargs_handler,
        )

    # SSE connections are long-lived; a threaded server keeps one connected
    # browser from blocking all other requests.
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    return server
