"""Response sink that keeps a proxied response in memory, used by tests."""

from typing import List, Optional, Tuple

Headers = List[Tuple[str, str]]


class BufferedSink:
    """Collects the status, headers and body written by the gateway."""

    def __init__(self):
        self.status: Optional[int] = None
        self.headers: Headers = []
        self.chunks: List[bytes] = []

    def send_status(self, status: int, headers: Headers) -> None:
        self.status = status
        self.headers = list(headers)

    def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None
