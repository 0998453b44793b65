"""HTTP access to the bundler's own dev server."""

import json
import logging
from http.client import HTTPConnection, HTTPException, HTTPResponse
from typing import FrozenSet, Iterable, Optional, Tuple

from .config import DEFAULT_CONNECT_TIMEOUT

logger = logging.getLogger(__name__)

BUNDLER_HOST = "localhost"
MANIFEST_PATH = "/manifest.json"
STOP_PATH = "/stop"


class ManifestError(IOError):
    """The manifest could not be fetched or parsed."""

    pass


def parse_manifest_paths(manifest_json: str) -> FrozenSet[str]:
    """Extract the asset paths from a bundler manifest.

    The manifest maps asset names to paths. Paths that do not start with a
    slash are made absolute.

    Args:
        manifest_json: Raw manifest document.

    Returns:
        Frozen set of request paths.

    Raises:
        ManifestError: If the document is not a JSON object.
    """
    try:
        data = json.loads(manifest_json)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid manifest JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a JSON object")

    paths = set()
    for value in data.values():
        if not isinstance(value, str) or not value:
            continue
        paths.add(value if value.startswith("/") else "/" + value)
    return frozenset(paths)


class BundlerClient:
    """Opens connections to the bundler listening on a local port."""

    def __init__(self, port: int, *, host: str = BUNDLER_HOST, timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.port = port
        self.host = host
        self.timeout = timeout

    def prepare_connection(self) -> HTTPConnection:
        return HTTPConnection(self.host, self.port, timeout=self.timeout)

    def request(
        self,
        method: str,
        path: str,
        headers: Optional[Iterable[Tuple[str, str]]] = None,
        body: Optional[bytes] = None,
    ) -> Tuple[HTTPConnection, HTTPResponse]:
        """Send a request and return the open connection and response.

        The caller owns both and must close them.

        Raises:
            OSError: On connection failure.
            http.client.HTTPException: On protocol errors.
        """
        headers = list(headers or ())
        conn = self.prepare_connection()
        try:
            conn.putrequest(method, path, skip_host=_has_header(headers, "host"),
                            skip_accept_encoding=True)
            for name, value in headers:
                conn.putheader(name, value)
            if body:
                if not _has_header(headers, "content-length"):
                    conn.putheader("Content-Length", str(len(body)))
                conn.endheaders(body)
            else:
                conn.endheaders()
            return conn, conn.getresponse()
        except BaseException:
            conn.close()
            raise

    def fetch_manifest(self) -> FrozenSet[str]:
        """Get and parse the manifest, returning all asset paths.

        Raises:
            ManifestError: On a non-200 answer or an unreadable document.
            OSError: If the bundler cannot be reached.
        """
        logger.debug("Reading manifest.json from bundler on port %d", self.port)
        conn, resp = self.request("GET", MANIFEST_PATH)
        try:
            if resp.status != 200:
                raise ManifestError(
                    f"Unable to get manifest.json from bundler, got {resp.status} {resp.reason}"
                )
            payload = resp.read().decode("utf-8")
        except HTTPException as e:
            raise ManifestError(f"Error reading manifest.json: {e}") from e
        finally:
            resp.close()
            conn.close()

        paths = parse_manifest_paths(payload)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Got asset paths from manifest.json:\n    %s",
                "\n    ".join(sorted(paths)),
            )
        return paths

    def is_reachable(self) -> bool:
        """Check the bundler answers its manifest endpoint."""
        try:
            self.fetch_manifest()
            return True
        except (OSError, HTTPException) as e:
            logger.debug("Error checking bundler connection on port %d: %s", self.port, e)
        return False

    def request_stop(self) -> None:
        """Ask the bundler to exit. Errors are ignored."""
        try:
            conn, resp = self.request("GET", STOP_PATH)
            resp.close()
            conn.close()
        except (OSError, HTTPException) as e:
            logger.debug("Bundler does not support the /stop command: %s", e)


def _has_header(headers: Optional[Iterable[Tuple[str, str]]], name: str) -> bool:
    return any(h.lower() == name for h, _ in headers or ())

