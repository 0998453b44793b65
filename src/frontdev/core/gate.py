"""Readiness gate signalling that the bundler finished a build."""

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ReadinessGate:
    """Exactly-once completion signal with a bounded wait.

    The first ``resolve`` call decides the outcome, runs the done callbacks
    and then wakes every waiter; later calls are ignored. A ``wait`` that
    times out does not change the state, the gate simply stays pending.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._notified = False
        self._state = GateState.PENDING
        self._callbacks: List[Callable[["ReadinessGate"], None]] = []

    @property
    def state(self) -> GateState:
        with self._cond:
            return self._state

    @property
    def succeeded(self) -> bool:
        return self.state is GateState.SUCCEEDED

    def resolve(self, succeeded: bool) -> bool:
        """Resolve the gate.

        Args:
            succeeded: Outcome of the build that resolved the gate.

        Returns:
            True if this call resolved the gate, False if it already was.
        """
        with self._cond:
            if self._state is not GateState.PENDING:
                return False
            self._state = GateState.SUCCEEDED if succeeded else GateState.FAILED
            callbacks, self._callbacks = self._callbacks, []

        # Callbacks run before waiters wake up, outside the lock
        for callback in callbacks:
            self._run_callback(callback)

        with self._cond:
            self._notified = True
            self._cond.notify_all()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until resolved or until the timeout elapses.

        Args:
            timeout: Seconds to wait, None for no limit.

        Returns:
            True if the gate is resolved, False on timeout.
        """
        with self._cond:
            # wait_for re-checks the flag after every wakeup
            return self._cond.wait_for(lambda: self._notified, timeout=timeout)

    def add_done_callback(self, callback: Callable[["ReadinessGate"], None]) -> None:
        """Call ``callback(gate)`` once the gate resolves, or now if it has."""
        with self._cond:
            if self._state is GateState.PENDING:
                self._callbacks.append(callback)
                return
        self._run_callback(callback)

    def _run_callback(self, callback: Callable[["ReadinessGate"], None]) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception("Readiness gate callback raised")
