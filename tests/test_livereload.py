"""Tests for LiveReload."""

from queue import Empty

import pytest

from frontdev.core.gate import ReadinessGate
from frontdev.core.monitor import OutputMonitor
from frontdev.server.livereload import LiveReload


class TestLiveReload:
    def test_reload_reaches_every_subscriber(self):
        live_reload = LiveReload()
        first = live_reload.subscribe()
        second = live_reload.subscribe()

        live_reload.reload()

        assert first.get_nowait() == {"command": "reload", "failed": False}
        assert second.get_nowait() == {"command": "reload", "failed": False}
        assert live_reload.reload_count == 1

    def test_event_carries_build_outcome(self):
        live_reload = LiveReload()
        queue = live_reload.subscribe()
        live_reload.reload(failed=True)
        assert queue.get_nowait() == {"command": "reload", "failed": True}

    def test_unsubscribed_queue_gets_nothing(self):
        live_reload = LiveReload()
        queue = live_reload.subscribe()
        live_reload.unsubscribe(queue)
        live_reload.unsubscribe(queue)
        live_reload.reload()

        with pytest.raises(Empty):
            queue.get_nowait()

    def test_reload_without_subscribers(self):
        live_reload = LiveReload()
        live_reload.reload()
        assert live_reload.reload_count == 1


class TestBuildEvents:
    def test_queued_events_keep_their_own_outcome(self):
        live_reload = LiveReload()
        queue = live_reload.subscribe()
        monitor = OutputMonitor(ReadinessGate(), live_reload=live_reload)

        # Both builds finish before the browser reads anything
        monitor.feed("ERROR in a.js\n: Failed to compile.\n")
        monitor.feed("fixed\n: Compiled.\n")

        assert queue.get_nowait() == {"command": "reload", "failed": True}
        assert queue.get_nowait() == {"command": "reload", "failed": False}
        with pytest.raises(Empty):
            queue.get_nowait()
