"""Proxy gateway forwarding asset requests to the bundler.

While the dev server runs, the bundler is the authority on frontend assets.
The gateway checks a request is safe, forwards it with the same method and
headers, and tells the caller whether the bundler served it. A 404 from the
bundler is not an error: the caller falls back to its own resources.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from http.client import HTTPException
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit

from ..core.errors import ForwardingError
from ..core.paths import (
    ASSET_MAPPING_PREFIX,
    DYNAMIC_RESOURCE_PREFIX,
    STATIC_ASSET_PREFIX,
    is_path_unsafe,
    is_theme_path,
)

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 32 * 1024

# The bundler's dev server lets a quote through, so it is refused here
_ILLEGAL_SEQUENCES = ('"', "%22")

NOT_READY_PAGE = b"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta http-equiv="refresh" content="3">
  <title>Starting frontend dev server</title>
</head>
<body>
  <h2>The frontend dev server is starting...</h2>
  <p>The page reloads automatically once the first build is done.</p>
</body>
</html>
"""

Headers = List[Tuple[str, str]]


class ProxyOutcome(str, Enum):
    NOT_READY = "not_ready"
    FORBIDDEN = "forbidden"
    NOT_HANDLED = "not_handled"
    STREAMED = "streamed"
    REDIRECTED = "redirected"
    ERROR = "error"


@dataclass
class ProxyRequest:
    """An incoming request to forward."""

    method: str
    path: str
    headers: Headers = field(default_factory=list)
    body: Optional[bytes] = None


@dataclass
class ProxyResult:
    outcome: ProxyOutcome
    status: Optional[int] = None

    @property
    def handled(self) -> bool:
        return self.outcome is not ProxyOutcome.NOT_HANDLED


def forward_headers(headers: Headers) -> Headers:
    """Copy request headers, replacing any connection header with ``close``."""
    result = []
    for name, value in headers:
        if name.lower() in ("connect", "connection"):
            value = "close"
        result.append((name, value))
    return result


class ProxyGateway:
    """Forwards requests to the bundler of the current supervisor.

    ``get_handler`` returns the live supervisor, or None when there is none.
    The supervisor must provide ``is_ready``, ``manifest`` and ``client``.
    """

    def __init__(
        self,
        get_handler: Callable[[], Optional[object]],
        *,
        is_unsafe: Callable[[str], bool] = is_path_unsafe,
        is_themed: Callable[[str], bool] = is_theme_path,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.get_handler = get_handler
        self.is_unsafe = is_unsafe
        self.is_themed = is_themed
        self.buffer_size = buffer_size

    def is_dev_request(self, path: str) -> bool:
        """Check whether a request path belongs to the bundler."""
        if not path:
            return False
        path = urlsplit(path).path
        if (
            path.startswith(ASSET_MAPPING_PREFIX) or self.is_themed(path)
        ) and not path.startswith(DYNAMIC_RESOURCE_PREFIX):
            return True

        handler = self.get_handler()
        if handler is None:
            return False
        # Grab the snapshot once; it may be replaced concurrently
        manifest = handler.manifest
        return path in manifest

    def handle(self, request: ProxyRequest, sink) -> ProxyResult:
        """Serve a request by proxying it to the bundler.

        Args:
            request: The incoming request.
            sink: Receives ``send_status(status, headers)`` and ``write(chunk)``
                calls for whatever must go back to the browser.

        Returns:
            ProxyResult. NOT_HANDLED means nothing was written and the
            caller must resolve the request itself.

        Raises:
            ForwardingError: On I/O failure while talking to the bundler.
        """
        handler = self.get_handler()
        if handler is None or not handler.is_ready:
            sink.send_status(503, [
                ("Content-Type", "text/html;charset=utf-8"),
                ("Content-Length", str(len(NOT_READY_PAGE))),
                ("Retry-After", "3"),
            ])
            sink.write(NOT_READY_PAGE)
            return ProxyResult(ProxyOutcome.NOT_READY, 503)

        parts = urlsplit(request.path)
        request_path = parts.path
        if self.is_unsafe(request_path) or any(s in request.path for s in _ILLEGAL_SEQUENCES):
            logger.info("Blocked attempt to access file: %s", request.path)
            sink.send_status(403, [])
            return ProxyResult(ProxyOutcome.FORBIDDEN, 403)

        # Theme sources live in the bundler's static folder
        if self.is_themed(request_path):
            request_path = STATIC_ASSET_PREFIX + request_path
        target = request_path + (f"?{parts.query}" if parts.query else "")

        logger.debug("Requesting resource from bundler: %s %s", request.method, target)
        try:
            conn, resp = handler.client.request(
                request.method, target, forward_headers(request.headers), request.body
            )
        except (OSError, HTTPException) as e:
            raise ForwardingError(f"Error forwarding {target} to the bundler: {e}") from e

        try:
            status = resp.status
            if status == 404:
                logger.debug("Resource not served by bundler: %s", target)
                return ProxyResult(ProxyOutcome.NOT_HANDLED, 404)

            logger.debug("Served resource by bundler: %d %s", status, target)
            if status == 200:
                sink.send_status(status, resp.getheaders())
                while True:
                    chunk = resp.read(self.buffer_size)
                    if not chunk:
                        break
                    sink.write(chunk)
                return ProxyResult(ProxyOutcome.STREAMED, status)
            if status < 400:
                sink.send_status(status, resp.getheaders())
                return ProxyResult(ProxyOutcome.REDIRECTED, status)

            sink.send_status(status, [])
            return ProxyResult(ProxyOutcome.ERROR, status)
        except (OSError, HTTPException) as e:
            raise ForwardingError(f"Error reading {target} from the bundler: {e}") from e
        finally:
            resp.close()
            conn.close()
