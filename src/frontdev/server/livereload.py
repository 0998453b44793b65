"""Live reload notifications for connected browsers."""

import logging
import threading
from queue import Queue
from typing import Dict, List

logger = logging.getLogger(__name__)


class LiveReload:
    """Fans a reload signal out to every subscribed browser connection.

    Each subscriber gets its own queue; the SSE handler of the front server
    blocks on it and turns every item into an event.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Queue] = []
        self.reload_count = 0

    def subscribe(self) -> Queue:
        queue: Queue = Queue()
        with self._lock:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: Queue) -> None:
        with self._lock:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def reload(self, failed: bool = False) -> None:
        """Ask every connected browser to reload.

        Args:
            failed: Whether the build that triggered the reload failed.
        """
        event: Dict = {"command": "reload", "failed": bool(failed)}
        with self._lock:
            self.reload_count += 1
            subscribers = list(self._subscribers)
        logger.debug("Sending reload to %d browser(s)", len(subscribers))
        for queue in subscribers:
            queue.put(dict(event))
